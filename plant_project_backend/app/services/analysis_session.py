# app/services/analysis_session.py
import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from app.core.exceptions import (
    PlantAnalysisError, PreconditionError, TransportError,
    MalformedResponseError, AnalysisCancelledError
)
from app.models.plant_profile import AnalysisRecord, EnvironmentalData, PlantProfile
from app.schemas.plant_schema import AnalysisRecordSchema
from app.services.history_store import AnalysisHistoryStore
from app.services.stream_ingestion import StreamIngestionEngine, FragmentStream
from app.utils.datetime_utils import DateTimeUtils


class SessionState(Enum):
    IDLE = "IDLE"
    STREAMING = "STREAMING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class AnalysisSessionController:
    """
    분석 1회의 생명주기(IDLE -> STREAMING -> SUCCEEDED/FAILED)를 관리하고 결과를 이력 저장소에 반영합니다.

    - 한 컨트롤러에서 동시에 STREAMING 상태인 분석은 최대 1개입니다.
      진행 중에 새 분석을 시작하면 PreconditionError로 거부하고, 진행 중인 분석은 그대로 둡니다.
    - partial_text는 스트리밍 도중에도 언제든(다른 스레드에서도) 읽을 수 있습니다.
    - 어떤 실패 경로에서도 저장소에 기록을 남기지 않습니다.
    """

    def __init__(self, store: AnalysisHistoryStore, engine: StreamIngestionEngine,
                 clock: Optional[Callable[[], str]] = None,
                 id_factory: Optional[Callable[[], str]] = None):
        self.store = store
        self.engine = engine
        self._clock = clock or DateTimeUtils.now_iso
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._lock = threading.Lock()

        self.active_profile_id: Optional[str] = None
        self.image: Optional[bytes] = None
        self.image_url: Optional[str] = None
        self.mime_type = 'image/jpeg'
        self.environment = EnvironmentalData()

        self.state = SessionState.IDLE
        self.result: Optional[AnalysisRecord] = None
        self.error: Optional[Exception] = None
        self._fragments: List[str] = []
        self._cancel_requested = False

    # ------------------------------------------------------------------
    # 입력 설정
    # ------------------------------------------------------------------
    def select_profile(self, profile_id: str) -> PlantProfile:
        """분석 대상 식물을 지정합니다. 존재하지 않는 ID면 NotFoundError."""
        profile = self.store.get_profile(profile_id)
        self.active_profile_id = profile.id
        return profile

    def create_quick_profile(self) -> PlantProfile:
        """프로필 없이 바로 분석할 때 사용할 새 식물 프로필을 만들고 활성화합니다."""
        name = f"New Plant - {DateTimeUtils.now().strftime('%Y-%m-%d %H:%M:%S')}"
        profile = self.store.create_profile(name)
        self.active_profile_id = profile.id
        return profile

    def select_image(self, image: bytes, image_url: str, mime_type: str = 'image/jpeg'):
        self.image = image
        self.image_url = image_url
        self.mime_type = mime_type

    def set_environment(self, environment: EnvironmentalData):
        self.environment = environment

    # ------------------------------------------------------------------
    # 상태 조회
    # ------------------------------------------------------------------
    @property
    def partial_text(self) -> str:
        with self._lock:
            return ''.join(self._fragments)

    def snapshot(self) -> Dict[str, Any]:
        """표시 계층에서 읽어갈 현재 상태."""
        with self._lock:
            state = self.state
            partial_text = ''.join(self._fragments)
            result, error = self.result, self.error

        view = {
            "state": state.value,
            "partialText": partial_text,
            "result": AnalysisRecordSchema().dump(result) if result else None,
            "error": None
        }
        if error is not None:
            view["error"] = describe_error(error)
        return view

    # ------------------------------------------------------------------
    # 분석 실행
    # ------------------------------------------------------------------
    def start(self) -> Iterator[str]:
        """
        새 분석을 시작하고, 도착하는 조각을 그대로 내보내는 이터레이터를 반환합니다.
        반환된 이터레이터를 끝까지 소비해야 SUCCEEDED/FAILED 로 전이합니다.

        :raises PreconditionError: 이미 다른 분석이 진행 중인 경우
        """
        with self._lock:
            if self.state is SessionState.STREAMING:
                raise PreconditionError("이미 분석이 진행 중입니다. 현재 분석이 끝난 뒤 다시 시도해주세요.")
            # 이전 시도의 버퍼/결과/오류를 버리고 IDLE -> STREAMING
            self._fragments = []
            self.result = None
            self.error = None
            self._cancel_requested = False
            self.state = SessionState.STREAMING

        profile_id, image, image_url = self.active_profile_id, self.image, self.image_url
        environment, mime_type = self.environment, self.mime_type
        if not image or not profile_id:
            self._fail(PreconditionError("이미지와 활성 식물 프로필이 모두 필요합니다."))
            return iter(())

        logging.info(f"Analysis session started for plant {profile_id}")
        try:
            previous_record = self.store.most_recent(profile_id)
            stream = self.engine.analyze(image, environment, previous_record, mime_type=mime_type)
        except PlantAnalysisError as e:
            self._fail(e)
            return iter(())

        return AnalysisRun(self, stream, self._consume(stream, profile_id, image_url, environment))

    def run(self) -> SessionState:
        """분석을 시작해 끝까지 진행하고 최종 상태를 반환합니다."""
        for _ in self.start():
            pass
        return self.state

    def cancel(self):
        """
        진행 중인 분석을 중단합니다. 다른 스레드에서 호출할 수 있으며,
        다음 조각이 도착하는 시점(또는 idle timeout)에 소비를 멈추고 FAILED로 전이합니다.
        """
        with self._lock:
            if self.state is SessionState.STREAMING:
                self._cancel_requested = True

    def reset(self):
        """종료된 분석을 정리하고 입력까지 모두 비운 IDLE 상태로 되돌립니다."""
        with self._lock:
            if self.state is SessionState.STREAMING:
                raise PreconditionError("진행 중인 분석은 초기화할 수 없습니다.")
            self.state = SessionState.IDLE
            self._fragments = []
            self.result = None
            self.error = None
        self.image = None
        self.image_url = None
        self.mime_type = 'image/jpeg'
        self.environment = EnvironmentalData()

    def _consume(self, stream: FragmentStream, profile_id: str, image_url: str,
                 environment: EnvironmentalData) -> Iterator[str]:
        try:
            with self._lock:
                if self._cancel_requested:
                    raise AnalysisCancelledError()

            for fragment in stream:
                with self._lock:
                    if self._cancel_requested:
                        raise AnalysisCancelledError()
                    self._fragments.append(fragment)
                yield fragment

            with self._lock:
                if self._cancel_requested:
                    raise AnalysisCancelledError()

            record = AnalysisRecord.from_prediction(
                stream.prediction,
                record_id=self._id_factory(),
                date=self._clock(),
                image_url=image_url,
                environmental_data=environment
            )
            self.store.append(profile_id, record)
        except (TransportError, MalformedResponseError, AnalysisCancelledError) as e:
            stream.close()
            self._fail(e)
            return
        except GeneratorExit:
            # 호출자가 이터레이터를 버림 (예: 클라이언트 연결 종료)
            stream.close()
            self._fail(AnalysisCancelledError())
            raise
        except Exception as e:
            stream.close()
            logging.error(f"Unexpected failure while committing analysis for plant {profile_id}: {e}", exc_info=True)
            self._fail(e)
            return

        with self._lock:
            self.result = record
            self.state = SessionState.SUCCEEDED
        logging.info(f"Analysis session succeeded for plant {profile_id} (record {record.id})")

    def _abandon(self, stream: FragmentStream):
        # 첫 조각 전에 닫힌 이터레이터는 제너레이터 본문이 실행되지 않으므로 여기서 FAILED로 전이
        with self._lock:
            if self.state is not SessionState.STREAMING:
                return
        stream.close()
        self._fail(AnalysisCancelledError())

    def _fail(self, error: Exception):
        with self._lock:
            self.error = error
            self.state = SessionState.FAILED
        logging.warning(f"Analysis session failed for plant {self.active_profile_id}: "
                        f"{type(error).__name__}: {error}")


def describe_error(error: Exception) -> Dict[str, Any]:
    """실패 원인을 표시 계층용 딕셔너리로 변환합니다."""
    if isinstance(error, PlantAnalysisError):
        return {"error_code": error.error_code, "message": error.user_message, "detail": str(error)}
    return {"error_code": "INTERNAL_SERVER_ERROR", "message": "분석 중 예상치 못한 오류가 발생했습니다.",
            "detail": str(error)}


class AnalysisRun:
    """
    start()가 반환하는 조각 이터레이터.
    첫 조각을 받기 전에 close()해도 분석은 취소(FAILED) 처리됩니다.
    """

    def __init__(self, controller: AnalysisSessionController, stream: FragmentStream, fragments: Iterator[str]):
        self._controller = controller
        self._stream = stream
        self._fragments = fragments
        self._started = False
        self._closed = False

    def __iter__(self):
        return self

    def __next__(self) -> str:
        self._started = True
        return next(self._fragments)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._fragments.close()
        if not self._started:
            self._controller._abandon(self._stream)
