from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from .config import GateSettings
from .database import SqlEnrollmentRepository, create_db_engine
from .exceptions import PersistError, ValidationError
from .gallery import GalleryStore
from .logger import setup_logger
from .matcher import Matcher
from .modes import Mode, ModeController
from .pipelines import EmbeddingExtractor, FacePipeline, QRDecoder, QRPipeline
from .result_sink import QueueResultSink
from .scheduler import CameraProvider, CaptureScheduler
from .timers import TimerFactory


@dataclass
class GateRuntime:
    settings: GateSettings
    db_engine: Engine
    repository: SqlEnrollmentRepository
    store: GalleryStore
    matcher: Matcher
    sink: QueueResultSink
    scheduler: CaptureScheduler
    extractor: EmbeddingExtractor

    def load_gallery(self) -> bool:
        """Populate the gallery from storage; unreadable or inconsistent rows fail the session."""
        logger = setup_logger("GateRuntime")
        try:
            self.repository.create_schema()
            self.store.reload()
        except (PersistError, ValidationError) as exc:
            logger.error("Gallery load failed: %s", exc)
            self.scheduler.mark_error(f"Could not load enrollments: {exc}")
            return False
        return True

    def close(self) -> None:
        try:
            self.scheduler.shutdown()
        finally:
            self.db_engine.dispose()


def build_runtime(
    settings: Optional[GateSettings] = None,
    *,
    camera: Optional[CameraProvider] = None,
    extractor: Optional[EmbeddingExtractor] = None,
    decoder: Optional[QRDecoder] = None,
    timer_factory: Optional[TimerFactory] = None,
    executor: Optional[Executor] = None,
    db_engine: Optional[Engine] = None,
) -> GateRuntime:
    """Wire every collaborator explicitly; defaults use OpenCV, mediapipe and torch."""
    settings = settings or GateSettings.from_env()
    settings.ensure_directories()

    if camera is None:
        from .camera import OpenCVCameraProvider

        camera = OpenCVCameraProvider(settings)
    if extractor is None:
        from .face_engine import FaceEngine

        extractor = FaceEngine(
            detection_threshold=settings.face_detection_threshold,
            min_face_size=settings.min_face_size,
        )
    if decoder is None:
        from .qr_decoder import OpenCVQRDecoder

        decoder = OpenCVQRDecoder()

    db_engine = db_engine or create_db_engine(settings.resolved_database_url)
    repository = SqlEnrollmentRepository(db_engine)
    store = GalleryStore(repository=repository)
    matcher = Matcher(store, threshold=settings.match_threshold)
    sink = QueueResultSink(maxsize=settings.result_queue_size)

    try:
        initial_mode = Mode(settings.initial_mode)
    except ValueError:
        initial_mode = Mode.FACE

    scheduler = CaptureScheduler(
        camera=camera,
        pipelines={
            Mode.FACE: FacePipeline(extractor, matcher),
            Mode.QR: QRPipeline(decoder),
        },
        sink=sink,
        timer_factory=timer_factory,
        executor=executor,
        interval_seconds=settings.poll_interval_seconds,
        mode_controller=ModeController(initial_mode),
        max_read_failures=settings.max_read_failures,
    )
    return GateRuntime(
        settings=settings,
        db_engine=db_engine,
        repository=repository,
        store=store,
        matcher=matcher,
        sink=sink,
        scheduler=scheduler,
        extractor=extractor,
    )
