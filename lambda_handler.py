"""
AWS Lambda handler for Identity Reconciliation System
This module adapts the FastAPI application to work with AWS Lambda + API Gateway
"""

import json
import logging

from mangum import Mangum

from main import app

logger = logging.getLogger(__name__)

handler = Mangum(
    app,
    lifespan="off",
    api_gateway_base_path="/",
    text_mime_types=[
        "application/json",
        "text/plain",
        "text/html"
    ],
    exclude_headers=["x-amzn-trace-id"]
)


def describe_event(event: dict) -> str:
    """'METHOD path' for API Gateway v1 and v2 events"""
    if event.get("version") == "2.0":
        http = event.get("requestContext", {}).get("http", {})
        return f"{http.get('method', 'UNKNOWN')} {http.get('path', 'UNKNOWN')}"
    if "httpMethod" in event:
        return f"{event.get('httpMethod', 'UNKNOWN')} {event.get('path', 'UNKNOWN')}"
    return "unknown event format"


def lambda_handler(event, context):
    """
    AWS Lambda entry point

    Args:
        event: API Gateway event data
        context: Lambda runtime context

    Returns:
        API Gateway response format
    """
    logger.info(f"Lambda event: {describe_event(event)}")

    try:
        response = handler(event, context)
    except Exception as e:
        logger.error(f"Lambda handler error: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps({
                "error": "InternalServerError",
                "message": "An unexpected error occurred",
                "requestId": getattr(context, "aws_request_id", None)
            })
        }

    logger.info(f"Lambda response status: {response.get('statusCode', 'UNKNOWN')}")
    return response
