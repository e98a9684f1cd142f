from django.urls import path

from chat import views

app_name = "chat"

urlpatterns = [
    path("chats/", views.chat_list, name="chat-list"),
    path("chats/<int:pk>/", views.chat_detail, name="chat-detail"),
    path("chats/<int:pk>/messages/", views.chat_send_message, name="chat-send-message"),
    path(
        "chats/<int:pk>/messages/<int:message_id>/",
        views.chat_message_detail,
        name="chat-message-detail",
    ),
    path(
        "chats/<int:pk>/messages/<int:message_id>/pin/",
        views.chat_message_pin,
        name="chat-message-pin",
    ),
    path("chats/<int:pk>/read/", views.chat_mark_read, name="chat-mark-read"),
    path("chats/<int:pk>/close/", views.chat_close, name="chat-close"),
    path("chats/<int:pk>/reopen/", views.chat_reopen, name="chat-reopen"),
    path("chats/<int:pk>/archive/", views.chat_archive, name="chat-archive"),
    path("chats/<int:pk>/moderate/", views.chat_moderate, name="chat-moderate"),
]
