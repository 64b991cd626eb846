# app/api/plants/schemas.py
import json
from marshmallow import Schema, fields, validate, ValidationError, pre_load

from app.models.plant_profile import EnvironmentalData
from app.schemas.plant_schema import EnvironmentalDataSchema


class PlantCreateSchema(Schema):
    """POST /api/plants/ 식물 프로필 생성 요청 스키마."""
    name = fields.Str(required=True, validate=validate.Length(min=1, max=50),
                      error_messages={"required": "식물 이름(name)은 필수입니다."})

    @pre_load
    def strip_name(self, data, **kwargs):
        if isinstance(data, dict) and isinstance(data.get('name'), str):
            data = dict(data)
            data['name'] = data['name'].strip()
        return data


def load_environment(raw: str) -> EnvironmentalData:
    """multipart 폼의 'environment' 필드(JSON 문자열)를 EnvironmentalData로 변환합니다. 비어 있으면 기본값."""
    if not raw:
        return EnvironmentalData()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError({"environment": ["환경 정보는 JSON 형식이어야 합니다."]})
    try:
        return EnvironmentalDataSchema().load(data)
    except ValidationError as err:
        raise ValidationError({"environment": err.messages})


def load_image_upload(file_storage, max_bytes: int) -> bytes:
    """업로드된 이미지 파일을 검증하고 바이트를 반환합니다."""
    if file_storage is None or not file_storage.filename:
        raise ValidationError({"image": ["분석할 이미지(image) 파일이 필요합니다."]})
    if not (file_storage.mimetype or '').startswith('image/'):
        raise ValidationError({"image": ["이미지 파일만 업로드할 수 있습니다."]})

    image = file_storage.read()
    if not image:
        raise ValidationError({"image": ["빈 파일은 분석할 수 없습니다."]})
    if len(image) > max_bytes:
        raise ValidationError({"image": [f"이미지 크기는 {max_bytes // (1024 * 1024)}MB 이하여야 합니다."]})
    return image
