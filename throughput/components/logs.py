import json
import logging
import os
import sys
import time
import traceback
from typing import Optional


class JSONFormatter(logging.Formatter):
    def __init__(self):
        pass

    def format(self, record: logging.LogRecord):
        timestamp = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)) + (
            ".%03dZ" % (1000 * (record.created % 1))
        )

        if isinstance(record.args, dict):
            message = str(record.msg)
        else:
            message = record.getMessage()

        result = {
            "timestamp": timestamp,
            "level": record.levelname,
            "threadId": record.threadName,
            "log_file": record.filename,
            "log_line": record.lineno,
            "fields": {"message": message},
        }

        if isinstance(record.args, dict):
            for key, value in record.args.items():
                result["fields"][key] = value

        if record.exc_info:
            result["full_message"] = traceback.format_exception(
                record.exc_info[0], record.exc_info[1], record.exc_info[2]
            )

        return json.dumps(result, default=str)


def configure_logging(level: Optional[str] = None):
    """
    Install the JSON handler on the root logger. Calling it again only adjusts the level.
    """
    level = (level or os.getenv("LOG_LEVEL") or "DEBUG").upper()

    root = logging.getLogger()
    if not any(isinstance(h.formatter, JSONFormatter) for h in root.handlers):
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(JSONFormatter())
        logging.basicConfig(level=level, handlers=[handler])
    else:
        root.setLevel(level)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
