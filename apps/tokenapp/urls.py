from django.urls import path

from . import views

app_name = "tokenapp"

urlpatterns = [
    # Citizen endpoints
    path("book/", views.BookTokenView.as_view(), name="book-token"),
    path("mine/", views.MyTokensView.as_view(), name="my-tokens"),
    path("<uuid:pk>/", views.TokenDetailView.as_view(), name="token-detail"),
    path("<uuid:pk>/position/", views.TokenPositionView.as_view(), name="token-position"),
    path("<uuid:pk>/cancel/", views.CancelTokenView.as_view(), name="cancel-token"),
    # Official queue operations
    path("check-in/", views.CheckInView.as_view(), name="check-in"),
    path("call-next/", views.CallNextView.as_view(), name="call-next"),
    path("<uuid:pk>/skip/", views.SkipTokenView.as_view(), name="skip-token"),
    path("<uuid:pk>/complete/", views.CompleteTokenView.as_view(), name="complete-token"),
    path("queue/", views.QueueSnapshotView.as_view(), name="queue-snapshot"),
    path("forecast/", views.QueueForecastView.as_view(), name="queue-forecast"),
]
