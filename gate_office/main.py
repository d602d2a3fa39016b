from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from gate_office.config import settings
from gate_office.exceptions import GateOfficeError, NotFoundError, ValidationError
from gate_office.logging_config import configure_logging, get_logger
from gate_office.routers import gate_entries

configure_logging(level=settings.log_level, json_output=settings.log_json)
logger = get_logger('main')

app = FastAPI(title='Gate Office')

app.include_router(gate_entries.router)


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={'detail': exc.detail})


@app.exception_handler(ValidationError)
def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    errors = {field: [message] for field, message in exc.field_errors.items()}
    return JSONResponse(status_code=400, content={'detail': exc.message, 'errors': errors})


@app.exception_handler(GateOfficeError)
def gate_office_error_handler(request: Request, exc: GateOfficeError) -> JSONResponse:
    logger.warning('request_rejected', extra={'path': request.url.path, 'error_code': exc.code})
    return JSONResponse(status_code=409, content={'detail': exc.message, 'code': exc.code})


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
