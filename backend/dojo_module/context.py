import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import Settings, settings as default_settings
from .conversion import LeadConversionService
from .database import build_engine, make_session_factory
from .migrations import MigrationReport, SchemaMigrator, SchemaSnapshot, missing_canonical_columns
from .normalizer import RecordNormalizer
from .uploads import UploadStorage

logger = logging.getLogger(__name__)


@dataclass
class DojoContext:
    """Everything a request handler or script needs, built once at startup."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    report: MigrationReport
    snapshot: SchemaSnapshot
    normalizer: RecordNormalizer
    conversions: LeadConversionService
    storage: UploadStorage

    def missing_columns(self) -> list[str]:
        return missing_canonical_columns(self.snapshot)


def init_dojo_module(settings: Settings | None = None) -> DojoContext:
    settings = settings or default_settings
    engine = build_engine(settings)
    migrator = SchemaMigrator(engine)
    report = migrator.run()
    snapshot = migrator.snapshot()
    for column in missing_canonical_columns(snapshot):
        logger.warning(f"Schema check: {column} is missing after migration")

    normalizer = RecordNormalizer(snapshot)
    return DojoContext(
        settings=settings,
        engine=engine,
        session_factory=make_session_factory(engine),
        report=report,
        snapshot=snapshot,
        normalizer=normalizer,
        conversions=LeadConversionService(normalizer),
        storage=UploadStorage(settings.uploads_dir),
    )
