# conftest.py
"""pytest 공용 fixture: 가짜 추론 백엔드, 샘플 진단 결과, 저장소/엔진/컨트롤러."""
import copy
import json
import pytest

from app.services.history_store import AnalysisHistoryStore
from app.services.stream_ingestion import StreamIngestionEngine
from app.services.analysis_session import AnalysisSessionController

BASIL_PREDICTION = {
    "plantName": "Basil",
    "isHealthy": True,
    "diseaseName": "",
    "description": "Healthy basil with vibrant green leaves.",
    "treatmentSuggestions": [],
    "benefits": ["Culinary herb", "Rich in antioxidants"],
    "confidenceScore": 0.92,
    "preventativeCareTips": ["Water at the base of the plant", "Provide at least 6 hours of sun"],
    "progressAssessment": "N/A",
    "comparativeAnalysis": "",
    "pestIdentification": [],
    "nutrientDeficiencies": []
}

TOMATO_PREDICTION = {
    "plantName": "Tomato",
    "isHealthy": False,
    "diseaseName": "Early Blight",
    "description": "Concentric brown spots on the lower leaves.",
    "treatmentSuggestions": ["Remove infected leaves", "Apply copper fungicide"],
    "benefits": ["Edible fruit"],
    "confidenceScore": 0.81,
    "preventativeCareTips": ["Mulch around the base"],
    "progressAssessment": "Worsened",
    "comparativeAnalysis": "More leaves are affected than last week.",
    "pestIdentification": [
        {"name": "Aphids", "description": "Small green insects under leaves.", "remedy": ["Neem oil spray"]}
    ],
    "nutrientDeficiencies": [
        {"name": "Nitrogen", "description": "Yellowing older leaves.", "remedy": ["Compost tea", "Fish emulsion"]}
    ]
}


def split_payload(payload: str, size: int = 17):
    """JSON 문자열을 일정 길이의 조각으로 나눕니다 (모델 스트림 흉내)."""
    return [payload[i:i + size] for i in range(0, len(payload), size)]


class FakeInferenceBackend:
    """
    stream_diagnosis(request)를 흉내 내는 테스트용 백엔드.
    fail_after=k 이면 k개의 조각을 보낸 뒤 연결 오류를 일으킵니다.
    """

    def __init__(self, fragments=None, fail_after=None, connect_error=None):
        self.fragments = list(fragments or [])
        self.fail_after = fail_after
        self.connect_error = connect_error
        self.requests = []
        self.closed = False

    def stream_diagnosis(self, request):
        self.requests.append(request)
        if self.connect_error:
            raise self.connect_error
        return self._generate()

    def _generate(self):
        try:
            for index, fragment in enumerate(self.fragments):
                if self.fail_after is not None and index >= self.fail_after:
                    raise ConnectionError("connection reset by peer")
                yield fragment
            if self.fail_after is not None and self.fail_after >= len(self.fragments):
                raise ConnectionError("connection reset by peer")
        finally:
            self.closed = True


class ScriptedBackend:
    """호출될 때마다 준비된 조각 목록을 순서대로 돌려주는 백엔드 (여러 번 분석하는 시나리오용)."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.requests = []

    def stream_diagnosis(self, request):
        self.requests.append(request)
        return iter(self.scripts.pop(0))


@pytest.fixture
def basil_prediction():
    return copy.deepcopy(BASIL_PREDICTION)


@pytest.fixture
def tomato_prediction():
    return copy.deepcopy(TOMATO_PREDICTION)


@pytest.fixture
def fragments_for():
    """dict -> JSON 조각 리스트"""
    def _fragments_for(prediction, size=17):
        return split_payload(json.dumps(prediction), size)
    return _fragments_for


@pytest.fixture
def make_backend():
    return FakeInferenceBackend


@pytest.fixture
def scripted_backend():
    return ScriptedBackend


@pytest.fixture
def store():
    return AnalysisHistoryStore()


@pytest.fixture
def make_controller(store):
    """백엔드를 받아 컨트롤러를 만들어 주는 팩토리. id/시간은 고정값을 사용합니다."""
    def _make_controller(backend, **kwargs):
        counter = iter(range(1, 1000))
        kwargs.setdefault('id_factory', lambda: f"analysis-{next(counter)}")
        kwargs.setdefault('clock', lambda: "2024-05-01T09:00:00Z")
        return AnalysisSessionController(store, StreamIngestionEngine(backend), **kwargs)
    return _make_controller
