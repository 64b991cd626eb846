import logging
from marshmallow import Schema, fields, validate, post_load, ValidationError, EXCLUDE

from app.models.plant_profile import (
    GeoLocation, EnvironmentalData, PestInfo, NutrientInfo,
    PredictionData, AnalysisRecord, PlantProfile, ProgressAssessment
)
from app.utils.datetime_utils import DateTimeUtils


def validate_iso_datetime(value):
    """분석 기록의 date 필드가 ISO-8601 형식인지 검증합니다."""
    try:
        DateTimeUtils.parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"'{value}'은(는) ISO-8601 형식의 날짜가 아닙니다.")


class StrictBool(fields.Boolean):
    """JSON true/false만 허용합니다 (1, "true" 등은 거부)."""

    def _deserialize(self, value, attr, data, **kwargs):
        if not isinstance(value, bool):
            raise self.make_error("invalid", input=value)
        return value


class StrictFloat(fields.Float):
    """JSON 숫자만 허용합니다 (문자열 "0.9"나 불리언은 거부)."""

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self.make_error("invalid", input=value)
        return super()._deserialize(value, attr, data, **kwargs)


class LocationSchema(Schema):
    latitude = fields.Float(required=True, validate=validate.Range(min=-90.0, max=90.0))
    longitude = fields.Float(required=True, validate=validate.Range(min=-180.0, max=180.0))

    @post_load
    def make_object(self, data, **kwargs):
        return GeoLocation(**data)


class EnvironmentalDataSchema(Schema):
    """촬영 환경 정보. 모든 필드가 선택 사항이며 빈 값이 기본입니다."""
    sunlight = fields.Str(load_default="")
    watering = fields.Str(load_default="")
    notes = fields.Str(load_default="")
    organic_preference = fields.Bool(data_key="organicPreference", load_default=False)
    location = fields.Nested(LocationSchema, allow_none=True, load_default=None)

    @post_load
    def make_object(self, data, **kwargs):
        return EnvironmentalData(**data)


class _RemedyInfoSchema(Schema):
    name = fields.Str(required=True)
    description = fields.Str(required=True)
    remedy = fields.List(fields.Str(), required=True)


class PestInfoSchema(_RemedyInfoSchema):
    @post_load
    def make_object(self, data, **kwargs):
        return PestInfo(name=data['name'], description=data['description'], remedy=tuple(data['remedy']))


class NutrientInfoSchema(_RemedyInfoSchema):
    @post_load
    def make_object(self, data, **kwargs):
        return NutrientInfo(name=data['name'], description=data['description'], remedy=tuple(data['remedy']))


class PredictionDataSchema(Schema):
    """
    모델 응답(JSON)을 검증하는 스키마.
    필드 누락, progressAssessment 허용값, confidenceScore 범위를 모두 여기서 확인합니다.
    모델이 덧붙인 알 수 없는 필드는 무시합니다.
    """
    class Meta:
        unknown = EXCLUDE

    plant_name = fields.Str(required=True, data_key="plantName")
    is_healthy = StrictBool(required=True, data_key="isHealthy")
    disease_name = fields.Str(required=True, data_key="diseaseName")
    description = fields.Str(required=True)
    treatment_suggestions = fields.List(fields.Str(), required=True, data_key="treatmentSuggestions")
    benefits = fields.List(fields.Str(), required=True)
    confidence_score = StrictFloat(required=True, data_key="confidenceScore",
                               validate=validate.Range(min=0.0, max=1.0))
    preventative_care_tips = fields.List(fields.Str(), required=True, data_key="preventativeCareTips")
    progress_assessment = fields.Enum(ProgressAssessment, by_value=True, required=True,
                                      data_key="progressAssessment")
    comparative_analysis = fields.Str(required=True, data_key="comparativeAnalysis")
    pest_identification = fields.List(fields.Nested(PestInfoSchema), required=True,
                                      data_key="pestIdentification")
    nutrient_deficiencies = fields.List(fields.Nested(NutrientInfoSchema), required=True,
                                        data_key="nutrientDeficiencies")

    def _prediction_values(self, data):
        # 불변 데이터클래스에 담기 위해 리스트를 튜플로 변환
        values = dict(data)
        for key in ('treatment_suggestions', 'benefits', 'preventative_care_tips',
                    'pest_identification', 'nutrient_deficiencies'):
            values[key] = tuple(values[key])
        if not values['is_healthy'] and not values['disease_name'].strip():
            logging.warning(f"Prediction for '{values['plant_name']}' is unhealthy but has no disease name.")
        return values

    @post_load
    def make_object(self, data, **kwargs):
        return PredictionData(**self._prediction_values(data))


class AnalysisRecordSchema(PredictionDataSchema):
    """식물 프로필 이력에 저장되는 분석 기록 (PredictionData + 메타데이터)."""
    id = fields.Str(required=True)
    date = fields.Str(required=True, validate=validate_iso_datetime)
    image_url = fields.Str(required=True, data_key="imageUrl")
    environmental_data = fields.Nested(EnvironmentalDataSchema, required=True, data_key="environmentalData")

    @post_load
    def make_object(self, data, **kwargs):
        return AnalysisRecord(**self._prediction_values(data))


class PreviousAnalysisSummarySchema(Schema):
    """비교 분석을 위해 모델에 함께 보내는 직전 기록 요약."""
    disease_name = fields.Str(data_key="diseaseName")
    is_healthy = fields.Bool(data_key="isHealthy")
    date = fields.Str()


class PlantProfileSchema(Schema):
    """식물 프로필 직렬화 스키마. 저장소 문서와 API 응답 모두 이 형태를 사용합니다."""
    id = fields.Str(required=True)
    name = fields.Str(required=True, validate=validate.Length(min=1))
    analysis_history = fields.List(fields.Nested(AnalysisRecordSchema), load_default=list,
                                   data_key="analysisHistory")

    @post_load
    def make_object(self, data, **kwargs):
        return PlantProfile(id=data['id'], name=data['name'], analysis_history=tuple(data['analysis_history']))
