"""
AWS Lambda function to trigger sync validation via the service API.

Deploy this to Lambda and schedule with EventBridge for periodic drift checks.
"""

import json
import os
from typing import Any, Dict

import httpx


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Trigger validation via API endpoint.

    Environment Variables:
        API_URL: The service URL (e.g., https://xxx.awsapprunner.com)
        VALIDATION_TIMEOUT: Request timeout in seconds (default: 120)

    EventBridge Rule Example:
        Schedule: cron(0/15 * * * ? *)  # Every 15 minutes
    """
    api_url = os.environ.get("API_URL")
    if not api_url:
        return {"statusCode": 500, "body": json.dumps({"error": "API_URL environment variable not set"})}

    timeout = float(os.environ.get("VALIDATION_TIMEOUT", "120"))
    endpoint = f"{api_url.rstrip('/')}/validation/run"

    try:
        print(f"Triggering validation at: {endpoint}")
        resp = httpx.post(endpoint, timeout=timeout, headers={"User-Agent": "WarehouseSyncValidationTrigger/1.0"})
        resp.raise_for_status()
        result = resp.json()

        healthy = result.get("overall_status") == "healthy"
        print(f"Validation completed: {result.get('overall_status')}")
        return {"statusCode": 200, "body": json.dumps({"success": True, "healthy": healthy, "validation": result})}

    except httpx.HTTPStatusError as e:
        print(f"Validation request failed with HTTP {e.response.status_code}: {e.response.text}")
        return {
            "statusCode": e.response.status_code,
            "body": json.dumps({"success": False, "error": f"HTTP {e.response.status_code}: {e.response.text}"}),
        }

    except httpx.RequestError as e:
        print(f"Validation request failed: {str(e)}")
        return {"statusCode": 500, "body": json.dumps({"success": False, "error": f"Connection error: {str(e)}"})}


# For local testing
if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1:
        os.environ["API_URL"] = sys.argv[1]

    result = lambda_handler({}, None)
    print(json.dumps(result, indent=2))
