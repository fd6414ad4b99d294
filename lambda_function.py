"""AWS Lambda handler for the whiteboard schedule service."""
import json
import logging
import time
from typing import Dict, Any

from api.read_server import ERROR_INTERNAL, ReadServer, error_response
from config.settings import MAX_CACHE_TTL_SECONDS, Settings
from processor.batch_materializer import BatchMaterializer
from scraper.sheets_client import GoogleSheetsClient
from storage.dynamodb_cache import DynamoDBCache

# Attributes every LogRecord has; anything else came from `extra=`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any `extra=` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create new handler with JSON formatter
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Set log level
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def is_scheduled_event(event: Dict[str, Any]) -> bool:
    """True for EventBridge schedule triggers, False for API Gateway requests."""
    return (
        event.get('source') == 'aws.events' or
        event.get('detail-type') == 'Scheduled Event'
    )


def build_components(settings: Settings):
    """
    Wire the data source, cache, materializer and read server.

    Returns:
        Tuple of (materializer, read_server)
    """
    sheets_client = GoogleSheetsClient(
        spreadsheet_id=settings.spreadsheet_id,
        api_key=settings.sheets_api_key,
        timeout=settings.request_timeout_seconds
    )
    cache = DynamoDBCache(
        table_name=settings.table_name,
        max_entry_bytes=settings.cache_max_entry_bytes,
        max_total_bytes=settings.cache_max_total_bytes,
        max_ttl_seconds=MAX_CACHE_TTL_SECONDS,
        region_name=settings.aws_region
    )
    materializer = BatchMaterializer(settings, sheets_client, cache)
    read_server = ReadServer(settings, cache, materializer)
    return materializer, read_server


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler.

    Scheduled EventBridge events run a batch materialization; anything else
    is treated as an API Gateway request for the read server.

    Args:
        event: EventBridge or API Gateway proxy event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    settings = Settings.from_env()

    # Initialize logging
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    event = event or {}
    materializer, read_server = build_components(settings)

    if is_scheduled_event(event):
        return run_scheduled_batch(materializer, settings)

    params = event.get('queryStringParameters') or {}
    logger.info("Read request received", extra={'params': params})

    try:
        body = read_server.handle(params)
    except Exception as e:
        logger.error(
            f"Read request failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        body = error_response(ERROR_INTERNAL, "Schedule data is temporarily unavailable.")

    return {
        'statusCode': 200,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': '*'
        },
        'body': json.dumps(body)
    }


def run_scheduled_batch(materializer: BatchMaterializer, settings: Settings) -> Dict[str, Any]:
    """Run the timer-triggered materialization and summarize it."""
    logger = logging.getLogger(__name__)
    start_time = time.time()
    logger.info(
        "Batch materialization started",
        extra={
            'table_name': settings.table_name,
            'window_size_days': settings.window_size_days
        }
    )

    try:
        result = materializer.run_batch()
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Batch materialization failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Batch materialization failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'note': 'Previously cached schedules remain until they expire',
                'duration_seconds': round(duration, 2)
            })
        }

    duration = time.time() - start_time
    logger.info(
        "Batch materialization finished",
        extra={'status': result.status, 'duration_seconds': round(duration, 2)}
    )

    body = {'message': f"Batch run {result.status}"}
    body.update(result.to_dict())
    return {
        'statusCode': 200,
        'body': json.dumps(body)
    }
