"""AWS Lambda entry point.

Mangum translates API Gateway HTTP API (v2) events into ASGI, letting the
same FastAPI app and dispatcher run on Lambda. AWS_LAMBDA_FUNCTION_NAME is
set there, so the dispatcher serves every request buffered.
"""

from mangum import Mangum

from gemrelay.main import app

handler = Mangum(app, lifespan="off")
