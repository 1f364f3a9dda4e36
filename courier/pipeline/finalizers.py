"""Downstream notification once a file has been archived.

Each pipeline is parameterised by a finalizer: the document pipeline parses the
report filename and registers the archive path, the message pipeline hands the
filename to the ingestion service. A rejected or unparseable notification
raises ``NotificationFailure``.
"""

import logging
from pathlib import Path
from typing import Protocol

from courier.pipeline.errors import FilenameFormatError, NotificationFailure
from courier.schemas.pipeline import NotifyOutcome, ParsedIdentity

logger = logging.getLogger(__name__)

FIELD_DELIMITER = "&"
COMPONENT_DELIMITER = "^"
INGEST_SUCCESS_CODE = 200


class DocumentRegistrar(Protocol):
    async def register_path(
        self, template_code: str, render_number: str, destination_path: str
    ) -> bool: ...


class ContentIngestor(Protocol):
    async def ingest(self, file_name: str) -> int: ...


class Finalizer(Protocol):
    extension: str

    async def finalize(self, destination: Path, file_name: str) -> NotifyOutcome: ...


def parse_document_name(file_name: str) -> ParsedIdentity:
    """Extract render number, template code and patient name from a report name.

    ``a&b&c&DOE^JOHN^A&e&8842^TPL001.PDF`` yields render number ``8842``,
    template code ``TPL001`` and patient name ``DOE, JOHN A``.
    """
    fields = file_name.split(FIELD_DELIMITER)
    if len(fields) < 6:
        raise FilenameFormatError(
            f"Expected at least 6 '{FIELD_DELIMITER}'-separated fields in {file_name!r}"
        )

    order = fields[5].split(COMPONENT_DELIMITER)
    if len(order) < 2 or not order[0]:
        raise FilenameFormatError(f"Missing render number/template code in {file_name!r}")
    render_number = order[0]
    template_code = order[1].split(".")[0]

    name_parts = fields[3].split(COMPONENT_DELIMITER)
    patient_name = f"{name_parts[0]}, {' '.join(name_parts[1:])}"

    return ParsedIdentity(
        render_number=render_number,
        template_code=template_code,
        patient_name=patient_name,
    )


class DocumentFinalizer:
    """Register the archive path of a finished report document."""

    extension = ".pdf"

    def __init__(self, registrar: DocumentRegistrar) -> None:
        self._registrar = registrar

    async def finalize(self, destination: Path, file_name: str) -> NotifyOutcome:
        try:
            identity = parse_document_name(file_name)
        except FilenameFormatError as exc:
            raise NotificationFailure(str(exc)) from exc

        logger.debug(
            "Registering render=%s template=%s path=%s",
            identity.render_number,
            identity.template_code,
            destination,
        )
        registered = await self._registrar.register_path(
            identity.template_code, identity.render_number, str(destination)
        )
        if not registered:
            raise NotificationFailure(
                f"could not register {file_name} for {identity.patient_name}"
            )
        return NotifyOutcome(
            success=True,
            message=f"{identity.patient_name} results have been uploaded",
        )


class MessageFinalizer:
    """Hand an archived lab message to the ingestion service by filename."""

    extension = ".hl7"

    def __init__(self, ingestor: ContentIngestor) -> None:
        self._ingestor = ingestor

    async def finalize(self, destination: Path, file_name: str) -> NotifyOutcome:
        status_code = await self._ingestor.ingest(file_name)
        if status_code != INGEST_SUCCESS_CODE:
            raise NotificationFailure(
                f"ingestion of {file_name} returned status {status_code}"
            )
        return NotifyOutcome(
            success=True,
            message=f"{file_name} results have been processed",
        )
