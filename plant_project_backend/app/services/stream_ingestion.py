# app/services/stream_ingestion.py
"""
추론 백엔드와의 단일 분석 교환을 담당하는 스트림 수집 엔진.

- 요청 1회당 백엔드 호출은 정확히 1번이며, 재시도는 하지 않습니다.
- 응답은 텍스트 조각(fragment)의 지연(lazy) 시퀀스로 노출되고, 도착 순서대로 누적됩니다.
- 스트림이 정상 종료되면 누적된 전체 텍스트를 JSON으로 파싱하고 PredictionDataSchema로 검증합니다.
- 전송 실패는 TransportError, 내용 오류는 MalformedResponseError로 구분해 그대로 전파합니다.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from marshmallow import ValidationError

from app.core.exceptions import TransportError, MalformedResponseError
from app.models.plant_profile import AnalysisRecord, EnvironmentalData, PredictionData
from app.schemas.plant_schema import (
    EnvironmentalDataSchema, PredictionDataSchema, PreviousAnalysisSummarySchema
)


@dataclass(frozen=True)
class InferenceRequest:
    """백엔드로 보내는 요청 본문. context와 previous_summary는 camelCase로 직렬화된 상태입니다."""
    image: bytes
    mime_type: str
    context: Dict[str, Any]
    previous_summary: Optional[Dict[str, Any]] = None


def build_previous_summary(record: AnalysisRecord) -> Dict[str, Any]:
    """비교 분석에 필요한 직전 기록 요약 (diseaseName, isHealthy, date)."""
    return PreviousAnalysisSummarySchema().dump(record)


def parse_prediction(payload: str) -> PredictionData:
    """누적된 전체 응답을 파싱/검증합니다. 실패 시 원문을 담은 MalformedResponseError."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"AI 응답이 올바른 JSON이 아닙니다: {e}",
                                     raw_payload=payload, details=str(e)) from e

    if not isinstance(data, dict):
        raise MalformedResponseError("AI 응답이 JSON 객체가 아닙니다.", raw_payload=payload,
                                     details=f"expected object, got {type(data).__name__}")

    try:
        return PredictionDataSchema().load(data)
    except ValidationError as err:
        raise MalformedResponseError("AI 응답이 진단 결과 형식과 맞지 않습니다.",
                                     raw_payload=payload, details=err.messages) from err


class FragmentStream:
    """
    한 번의 분석 응답을 나타내는 일회성 이터레이터.

    반복이 끝난 뒤(또는 실패한 뒤)에도 fragments/text로 그때까지 받은 조각을 확인할 수 있습니다.
    정상 종료 시 prediction에 검증된 결과가 담기고, 실패 시 error에 예외가 담깁니다.
    """

    def __init__(self, open_source: Callable[[], Iterable[str]], request: Optional[InferenceRequest] = None):
        self._open_source = open_source
        self._iterator: Optional[Iterator[str]] = None
        self.request = request
        self.fragments: List[str] = []
        self.prediction: Optional[PredictionData] = None
        self.error: Optional[Exception] = None
        self.finished = False

    @property
    def text(self) -> str:
        return ''.join(self.fragments)

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self.finished:
            raise StopIteration

        try:
            if self._iterator is None:
                # 백엔드 연결은 첫 조각을 요청하는 시점에 이루어집니다.
                self._iterator = iter(self._open_source())
            fragment = next(self._iterator)
        except StopIteration:
            self.finished = True
            self._complete()
            raise
        except Exception as e:
            self.finished = True
            logging.warning(f"Inference stream failed after {len(self.fragments)} fragments: {e}")
            self.error = TransportError(f"응답 스트림이 중간에 끊어졌습니다: {e}", partial_text=self.text)
            raise self.error from e

        self.fragments.append(fragment)
        return fragment

    def _complete(self):
        payload = self.text
        try:
            self.prediction = parse_prediction(payload)
        except MalformedResponseError as e:
            logging.error(f"Malformed inference payload ({len(payload)} chars): {e.details}")
            self.error = e
            raise
        logging.info(f"Inference stream completed: {len(self.fragments)} fragments, {len(payload)} chars")

    def consume(self) -> PredictionData:
        """남은 조각을 모두 받아 검증된 결과를 반환합니다."""
        for _ in self:
            pass
        if self.error:
            raise self.error
        return self.prediction

    def close(self):
        """스트림을 포기합니다. 이후 조각은 더 이상 받지 않습니다."""
        if self.finished:
            return
        self.finished = True
        close = getattr(self._iterator, 'close', None)
        if close:
            close()
        logging.info(f"Inference stream abandoned after {len(self.fragments)} fragments")


class StreamIngestionEngine:
    """
    추론 백엔드(stream_diagnosis(request) -> Iterable[str] 을 제공하는 객체)를 감싸
    한 번의 분석 요청을 FragmentStream으로 만들어 줍니다.
    """

    def __init__(self, backend):
        self.backend = backend

    def analyze(self, image: bytes, context: EnvironmentalData,
                previous_record: Optional[AnalysisRecord] = None,
                mime_type: str = 'image/jpeg') -> FragmentStream:
        previous_summary = build_previous_summary(previous_record) if previous_record else None
        request = InferenceRequest(
            image=image,
            mime_type=mime_type,
            context=EnvironmentalDataSchema().dump(context),
            previous_summary=previous_summary
        )
        logging.info(f"Starting inference stream ({len(image)} bytes, "
                     f"previous analysis: {previous_record.id if previous_record else 'none'})")
        return FragmentStream(lambda: self.backend.stream_diagnosis(request), request=request)
