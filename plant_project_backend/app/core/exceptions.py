# app/core/exceptions.py
"""
식물 분석 파이프라인 전반에서 사용하는 도메인 예외 모음.

각 예외는 API 응답에 그대로 실리는 error_code와 사용자에게 보여줄 안내 문구를 가집니다.
"""
from typing import Any, Optional


class PlantAnalysisError(Exception):
    """모든 분석 관련 예외의 기반 클래스."""
    error_code = "ANALYSIS_ERROR"
    user_message = "분석 중 오류가 발생했습니다."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class PreconditionError(PlantAnalysisError):
    """분석 시작 전에 필요한 입력(활성 식물 프로필, 이미지)이 없거나 이미 분석이 진행 중일 때."""
    error_code = "PRECONDITION_FAILED"
    user_message = "이미지와 식물 프로필이 모두 필요합니다."


class TransportError(PlantAnalysisError):
    """응답 스트림이 정상 종료 신호 없이 끊긴 경우. 사용자는 다시 시도하면 됩니다."""
    error_code = "TRANSPORT_ERROR"
    user_message = "분석 서버와의 연결이 끊어졌습니다. 잠시 후 다시 시도해주세요."

    def __init__(self, message: Optional[str] = None, partial_text: str = ""):
        super().__init__(message)
        self.partial_text = partial_text


class MalformedResponseError(PlantAnalysisError):
    """스트림은 끝까지 받았지만 내용이 진단 결과 형식에 맞지 않는 경우."""
    error_code = "MALFORMED_RESPONSE"
    user_message = "AI 응답을 해석하지 못했습니다. 문제가 계속되면 신고해주세요."

    def __init__(self, message: Optional[str] = None, raw_payload: str = "", details: Any = None):
        super().__init__(message)
        self.raw_payload = raw_payload
        self.details = details


class NotFoundError(PlantAnalysisError, LookupError):
    """존재하지 않는 식물 프로필 ID를 참조한 경우."""
    error_code = "PLANT_NOT_FOUND"
    user_message = "해당 ID의 식물을 찾을 수 없습니다."


class AnalysisCancelledError(PlantAnalysisError):
    """진행 중이던 분석을 호출자가 중단한 경우."""
    error_code = "ANALYSIS_CANCELLED"
    user_message = "분석이 중단되었습니다."
