# app/models/plant_profile.py
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Optional, Tuple


class ProgressAssessment(Enum):
    """직전 분석 대비 식물 상태 변화. 이 네 가지 외의 값은 허용하지 않습니다."""
    IMPROVED = "Improved"
    WORSENED = "Worsened"
    UNCHANGED = "Unchanged"
    NOT_APPLICABLE = "N/A"


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class EnvironmentalData:
    """
    사진 촬영 당시의 재배 환경 정보.
    분석 요청 시점에 확정되며 이후에는 변경되지 않습니다.
    """
    sunlight: str = ""
    watering: str = ""
    notes: str = ""
    organic_preference: bool = False
    location: Optional[GeoLocation] = None


@dataclass(frozen=True)
class PestInfo:
    name: str
    description: str
    remedy: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NutrientInfo:
    name: str
    description: str
    remedy: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PredictionData:
    """모델이 스트리밍으로 돌려준 진단 결과 본문."""
    plant_name: str
    is_healthy: bool
    disease_name: str
    description: str
    treatment_suggestions: Tuple[str, ...]
    benefits: Tuple[str, ...]
    confidence_score: float
    preventative_care_tips: Tuple[str, ...]
    progress_assessment: ProgressAssessment
    comparative_analysis: str
    pest_identification: Tuple[PestInfo, ...]
    nutrient_deficiencies: Tuple[NutrientInfo, ...]


@dataclass(frozen=True)
class AnalysisRecord(PredictionData):
    """
    식물 프로필의 분석 이력에 쌓이는 한 건의 진단 기록.
    스트림이 끝나고 검증까지 통과한 순간에 단 한 번 생성됩니다.
    """
    id: str
    date: str  # ISO-8601 (UTC)
    image_url: str
    environmental_data: EnvironmentalData

    @classmethod
    def from_prediction(cls, prediction: PredictionData, record_id: str, date: str,
                        image_url: str, environmental_data: EnvironmentalData) -> "AnalysisRecord":
        values = {f.name: getattr(prediction, f.name) for f in fields(PredictionData)}
        return cls(
            id=record_id,
            date=date,
            image_url=image_url,
            environmental_data=environmental_data,
            **values
        )


@dataclass(frozen=True)
class PlantProfile:
    """
    한 그루의 식물에 대한 식별 정보와 분석 이력.
    analysis_history는 시간순이며, 새 기록을 뒤에 붙이는 것 외의 변경은 없습니다.
    """
    id: str
    name: str
    analysis_history: Tuple[AnalysisRecord, ...] = field(default_factory=tuple)

    @property
    def latest_record(self) -> Optional[AnalysisRecord]:
        return self.analysis_history[-1] if self.analysis_history else None

    def with_record(self, record: AnalysisRecord) -> "PlantProfile":
        return replace(self, analysis_history=self.analysis_history + (record,))
