"""
Lambda handler shared by both test APIs.
Echoes the API Gateway request id passed in by the integration request template.
"""
import json
from typing import Dict, Any

MISSING_REQUEST_ID = 'Missing requestId'


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Basic API response function"""
    print(f"Event: {json.dumps(event, default=str)}")

    request_context = event.get('context')
    if not isinstance(request_context, dict):
        request_context = {}

    return {
        'requestId': request_context.get('requestId') or MISSING_REQUEST_ID,
    }
