"""
Token API Documentation Helpers

Shared drf-yasg (Swagger) decorators and parameters for the token endpoints.
"""

from drf_yasg import openapi
from drf_yasg.utils import no_body, swagger_auto_schema
from rest_framework import serializers

from .serializers import (
    BookTokenSerializer,
    CheckInSerializer,
    HourlyLoadSerializer,
    PositionSerializer,
    TokenSerializer,
)


class ErrorResponse(serializers.Serializer):
    error = serializers.CharField(help_text="Machine readable error code")
    message = serializers.CharField(help_text="Human readable message")
    retryable = serializers.BooleanField(help_text="Whether retrying may succeed")
    detail = serializers.DictField(required=False)


class CallNextResponse(serializers.Serializer):
    token = TokenSerializer(allow_null=True, help_text="Newly serving token, null if queue empty")


token_id_param = openapi.Parameter(
    "pk",
    in_=openapi.IN_PATH,
    description="Token ID",
    type=openapi.TYPE_STRING,
    format=openapi.FORMAT_UUID,
)

retryable_responses = {
    409: openapi.Response("Invalid transition or concurrent update", ErrorResponse()),
    504: openapi.Response("Timed out", ErrorResponse()),
}

book_token_docs = swagger_auto_schema(
    operation_summary="Book a token",
    operation_description="Book a pending token for an office department on a date.",
    request_body=BookTokenSerializer,
    responses={
        201: openapi.Response("Created", TokenSerializer()),
        400: openapi.Response("Invalid argument", ErrorResponse()),
        422: openapi.Response("Date is in the past", ErrorResponse()),
    },
    tags=["Tokens"],
)

my_tokens_docs = swagger_auto_schema(
    operation_summary="List my tokens",
    responses={200: openapi.Response("Success", TokenSerializer(many=True))},
    tags=["Tokens"],
)

token_detail_docs = swagger_auto_schema(
    operation_summary="Get token details",
    manual_parameters=[token_id_param],
    responses={
        200: openapi.Response("Success", TokenSerializer()),
        404: openapi.Response("Not found", ErrorResponse()),
    },
    tags=["Tokens"],
)

token_position_docs = swagger_auto_schema(
    operation_summary="Get queue position",
    operation_description="Rank and estimated wait; zero for tokens that are not waiting.",
    manual_parameters=[token_id_param],
    responses={
        200: openapi.Response("Success", PositionSerializer()),
        404: openapi.Response("Not found", ErrorResponse()),
    },
    tags=["Tokens"],
)

cancel_token_docs = swagger_auto_schema(
    operation_summary="Cancel a token",
    manual_parameters=[token_id_param],
    request_body=no_body,
    responses={
        200: openapi.Response("Cancelled", TokenSerializer()),
        403: openapi.Response("Not the owner", ErrorResponse()),
        **retryable_responses,
    },
    tags=["Tokens"],
)

check_in_docs = swagger_auto_schema(
    operation_summary="Check in a citizen",
    operation_description="Admit an arrived citizen into today's waiting queue.",
    request_body=CheckInSerializer,
    responses={
        200: openapi.Response("Waiting", TokenSerializer()),
        403: openapi.Response("Outside the official's scope", ErrorResponse()),
        422: openapi.Response("Token is not for today", ErrorResponse()),
        **retryable_responses,
    },
    tags=["Queue Operations"],
)

call_next_docs = swagger_auto_schema(
    operation_summary="Call next citizen",
    request_body=no_body,
    operation_description=(
        "Complete the serving token and promote the earliest waiting token "
        "of the official's queue for today."
    ),
    responses={200: openapi.Response("Success", CallNextResponse()), **retryable_responses},
    tags=["Queue Operations"],
)

skip_token_docs = swagger_auto_schema(
    operation_summary="Skip a token",
    request_body=no_body,
    operation_description="Re-queue a serving or waiting token behind the next five citizens.",
    manual_parameters=[token_id_param],
    responses={200: openapi.Response("Re-queued", TokenSerializer()), **retryable_responses},
    tags=["Queue Operations"],
)

complete_token_docs = swagger_auto_schema(
    operation_summary="Complete a token",
    request_body=no_body,
    manual_parameters=[token_id_param],
    responses={200: openapi.Response("Completed", TokenSerializer()), **retryable_responses},
    tags=["Queue Operations"],
)

queue_snapshot_docs = swagger_auto_schema(
    operation_summary="Queue dashboard",
    operation_description="Serving token, ranked waiting list and today's stats.",
    tags=["Queue Operations"],
)

queue_forecast_docs = swagger_auto_schema(
    operation_summary="Hourly load forecast",
    operation_description=(
        "Tokens served and average service minutes per opening hour, "
        "from the department's recent completed tokens."
    ),
    responses={200: openapi.Response("Hourly load", HourlyLoadSerializer(many=True))},
    tags=["Queue Operations"],
)
