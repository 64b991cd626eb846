# app/services/test_analysis_session.py
"""
분석 세션 컨트롤러 상태 전이 테스트

사용법: python -m pytest app/services/test_analysis_session.py -v
"""
import json
import pytest

from app.core.exceptions import (
    PreconditionError, TransportError, MalformedResponseError, AnalysisCancelledError
)
from app.models.plant_profile import EnvironmentalData, ProgressAssessment
from app.services.analysis_session import AnalysisSessionController, SessionState
from app.services.stream_ingestion import StreamIngestionEngine

IMAGE = b"\xff\xd8\xff\xe0fake-jpeg"
IMAGE_URL = "data:image/jpeg;base64,/9j/4A=="


class SpyEngine(StreamIngestionEngine):
    """analyze에 전달된 previous_record를 기록합니다."""

    def __init__(self, backend):
        super().__init__(backend)
        self.previous_records = []

    def analyze(self, image, context, previous_record=None, mime_type='image/jpeg'):
        self.previous_records.append(previous_record)
        return super().analyze(image, context, previous_record, mime_type=mime_type)


def _ready(controller, store, name="Basil", environment=None):
    profile = store.create_profile(name)
    controller.select_profile(profile.id)
    controller.select_image(IMAGE, IMAGE_URL)
    if environment:
        controller.set_environment(environment)
    return profile


def test_successful_analysis_commits_exact_record(store, make_controller, make_backend, basil_prediction):
    payload = json.dumps(basil_prediction)
    head, tail = payload.split('"isHealthy"')
    controller = make_controller(make_backend([head, '"isHealthy"' + tail]))
    environment = EnvironmentalData(sunlight="Partial shade", watering="Every two days")
    profile = _ready(controller, store, environment=environment)

    assert controller.state is SessionState.IDLE
    assert controller.run() is SessionState.SUCCEEDED

    history = store.get_profile(profile.id).analysis_history
    assert len(history) == 1
    record = history[0]
    assert controller.result == record
    assert record.id == "analysis-1"
    assert record.date == "2024-05-01T09:00:00Z"
    assert record.image_url == IMAGE_URL
    assert record.environmental_data == environment
    assert record.plant_name == "Basil"
    assert record.is_healthy is True
    assert record.confidence_score == 0.92
    assert record.progress_assessment is ProgressAssessment.NOT_APPLICABLE
    assert record.benefits == ("Culinary herb", "Rich in antioxidants")
    assert controller.partial_text == payload
    assert controller.error is None


def test_partial_text_is_observable_while_streaming(store, make_controller, make_backend, fragments_for, basil_prediction):
    fragments = fragments_for(basil_prediction, size=9)
    controller = make_controller(make_backend(fragments))
    _ready(controller, store)

    seen = []
    for index, fragment in enumerate(controller.start()):
        assert controller.state is SessionState.STREAMING
        assert controller.partial_text == ''.join(fragments[:index + 1])
        seen.append(fragment)

    assert seen == fragments
    assert controller.state is SessionState.SUCCEEDED


def test_transport_failure_fails_without_commit(store, make_controller, make_backend, fragments_for, basil_prediction):
    fragments = fragments_for(basil_prediction)
    controller = make_controller(make_backend(fragments, fail_after=4))
    profile = _ready(controller, store)

    assert controller.run() is SessionState.FAILED
    assert isinstance(controller.error, TransportError)
    assert controller.partial_text == ''.join(fragments[:4])
    assert controller.result is None
    assert store.get_profile(profile.id).analysis_history == ()


@pytest.mark.parametrize("mutate", [
    lambda p: p.pop("plantName"),
    lambda p: p.update(confidenceScore=3),
    lambda p: p.update(progressAssessment="Slightly better"),
    lambda p: p.update(isHealthy=0),
    lambda p: p.update(confidenceScore="0.92"),
    lambda p: p.update(benefits="Culinary herb"),
])
def test_malformed_payload_never_succeeds(store, make_controller, make_backend, fragments_for, basil_prediction, mutate):
    mutate(basil_prediction)
    controller = make_controller(make_backend(fragments_for(basil_prediction)))
    profile = _ready(controller, store)

    assert controller.run() is SessionState.FAILED
    assert isinstance(controller.error, MalformedResponseError)
    assert controller.error.raw_payload == json.dumps(basil_prediction)
    assert store.get_profile(profile.id).analysis_history == ()


def test_failure_keeps_previous_latest_record(store, make_controller, scripted_backend, fragments_for,
                                              basil_prediction, tomato_prediction):
    backend = scripted_backend(fragments_for(basil_prediction), ['{"plantName": '])
    controller = make_controller(backend)
    profile = _ready(controller, store)

    assert controller.run() is SessionState.SUCCEEDED
    first = store.most_recent(profile.id)
    assert controller.run() is SessionState.FAILED
    assert store.most_recent(profile.id) == first


def test_previous_record_is_passed_to_engine(store, scripted_backend, fragments_for, basil_prediction, tomato_prediction):
    tomato_prediction["progressAssessment"] = "Improved"
    backend = scripted_backend(fragments_for(basil_prediction), fragments_for(tomato_prediction))
    engine = SpyEngine(backend)
    controller = AnalysisSessionController(store, engine)
    profile = _ready(controller, store)

    assert controller.run() is SessionState.SUCCEEDED
    first_record = controller.result
    assert controller.run() is SessionState.SUCCEEDED

    assert engine.previous_records == [None, first_record]
    assert backend.requests[0].previous_summary is None
    assert backend.requests[1].previous_summary["date"] == first_record.date
    history = store.get_profile(profile.id).analysis_history
    assert [r.plant_name for r in history] == ["Basil", "Tomato"]
    assert history[-1].progress_assessment is ProgressAssessment.IMPROVED
    assert history[0].id != history[1].id


@pytest.mark.parametrize("missing", ["image", "profile"])
def test_missing_inputs_fail_with_precondition_error(store, make_controller, make_backend, missing):
    backend = make_backend(['{}'])
    controller = make_controller(backend)
    if missing == "image":
        controller.select_profile(store.create_profile("Basil").id)
    else:
        controller.select_image(IMAGE, IMAGE_URL)

    assert controller.run() is SessionState.FAILED
    assert isinstance(controller.error, PreconditionError)
    assert backend.requests == []
    assert all(p.analysis_history == () for p in store.list_profiles())


def test_starting_while_streaming_is_rejected(store, make_controller, make_backend, fragments_for, basil_prediction):
    fragments = fragments_for(basil_prediction)
    controller = make_controller(make_backend(fragments))
    profile = _ready(controller, store)

    in_flight = controller.start()
    next(in_flight)
    with pytest.raises(PreconditionError):
        controller.start()
    with pytest.raises(PreconditionError):
        controller.reset()

    # 진행 중이던 분석은 영향을 받지 않음
    assert controller.state is SessionState.STREAMING
    for _ in in_flight:
        pass
    assert controller.state is SessionState.SUCCEEDED
    assert len(store.get_profile(profile.id).analysis_history) == 1


def test_cancel_stops_consumption_and_never_commits(store, make_controller, make_backend, fragments_for, basil_prediction):
    fragments = fragments_for(basil_prediction)
    backend = make_backend(fragments)
    controller = make_controller(backend)
    profile = _ready(controller, store)

    iterator = controller.start()
    next(iterator)
    next(iterator)
    controller.cancel()
    assert list(iterator) == []

    assert controller.state is SessionState.FAILED
    assert isinstance(controller.error, AnalysisCancelledError)
    assert controller.partial_text == ''.join(fragments[:2])
    assert backend.closed is True
    assert store.get_profile(profile.id).analysis_history == ()


def test_abandoning_the_iterator_cancels(store, make_controller, make_backend, fragments_for, basil_prediction):
    controller = make_controller(make_backend(fragments_for(basil_prediction)))
    profile = _ready(controller, store)

    iterator = controller.start()
    next(iterator)
    iterator.close()

    assert controller.state is SessionState.FAILED
    assert isinstance(controller.error, AnalysisCancelledError)
    assert store.get_profile(profile.id).analysis_history == ()


def test_new_attempt_discards_previous_buffer_and_error(store, make_controller, scripted_backend, fragments_for,
                                                       basil_prediction):
    backend = scripted_backend(['{"plantName": "Ba'], fragments_for(basil_prediction))
    controller = make_controller(backend)
    _ready(controller, store)

    assert controller.run() is SessionState.FAILED
    assert controller.partial_text == '{"plantName": "Ba'

    assert controller.run() is SessionState.SUCCEEDED
    assert controller.error is None
    assert controller.partial_text == json.dumps(basil_prediction)


def test_reset_returns_to_idle(store, make_controller, make_backend, fragments_for, basil_prediction):
    controller = make_controller(make_backend(fragments_for(basil_prediction)))
    _ready(controller, store)
    controller.run()

    controller.reset()

    assert controller.state is SessionState.IDLE
    assert controller.partial_text == ""
    assert controller.result is None
    assert controller.image is None
    assert controller.environment == EnvironmentalData()


def test_snapshot_describes_failure(store, make_controller, make_backend):
    controller = make_controller(make_backend(['{"plantName": "Basil"', ', "isHealthy": true'], fail_after=2))
    _ready(controller, store)
    controller.run()

    view = controller.snapshot()

    assert view["state"] == "FAILED"
    assert view["result"] is None
    assert view["partialText"] == '{"plantName": "Basil", "isHealthy": true'
    assert view["error"]["error_code"] == "TRANSPORT_ERROR"


def test_snapshot_includes_serialized_result(store, make_controller, make_backend, fragments_for, tomato_prediction):
    controller = make_controller(make_backend(fragments_for(tomato_prediction)))
    _ready(controller, store)
    controller.run()

    view = controller.snapshot()

    assert view["state"] == "SUCCEEDED"
    assert view["error"] is None
    assert view["result"]["diseaseName"] == "Early Blight"
    assert view["result"]["progressAssessment"] == "Worsened"
    assert view["result"]["pestIdentification"][0]["remedy"] == ["Neem oil spray"]
    assert view["result"]["environmentalData"]["location"] is None


def test_quick_profile_is_created_and_activated(store, make_controller, make_backend, fragments_for, basil_prediction):
    controller = make_controller(make_backend(fragments_for(basil_prediction)))

    profile = controller.create_quick_profile()
    controller.select_image(IMAGE, IMAGE_URL)

    assert profile.name.startswith("New Plant - ")
    assert controller.active_profile_id == profile.id
    assert controller.run() is SessionState.SUCCEEDED
    assert len(store.get_profile(profile.id).analysis_history) == 1


def test_closing_before_first_fragment_fails_and_allows_restart(store, make_controller, scripted_backend,
                                                               fragments_for, basil_prediction):
    backend = scripted_backend(fragments_for(basil_prediction))
    controller = make_controller(backend)
    profile = _ready(controller, store)

    controller.start().close()

    assert controller.state is SessionState.FAILED
    assert isinstance(controller.error, AnalysisCancelledError)
    assert backend.requests == []

    assert controller.run() is SessionState.SUCCEEDED
    assert len(store.get_profile(profile.id).analysis_history) == 1
    controller.reset()
    assert controller.state is SessionState.IDLE


def test_cancel_before_first_fragment_skips_backend(store, make_controller, make_backend, fragments_for,
                                                    basil_prediction):
    backend = make_backend(fragments_for(basil_prediction))
    controller = make_controller(backend)
    profile = _ready(controller, store)

    iterator = controller.start()
    controller.cancel()

    assert list(iterator) == []
    assert controller.state is SessionState.FAILED
    assert isinstance(controller.error, AnalysisCancelledError)
    assert backend.requests == []
    assert store.get_profile(profile.id).analysis_history == ()
