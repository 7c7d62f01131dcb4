from django.urls import path

from .consumers import QueueConsumer

websocket_urlpatterns = [
    # Live queue dashboard for one office department and service date
    path(
        "ws/queue/<str:office_id>/<str:department_id>/<str:service_date>/",
        QueueConsumer.as_asgi(),
    ),
]
