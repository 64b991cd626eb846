# app/services/storage_service.py
import base64
import uuid
import logging
import mimetypes
from flask import Flask
from firebase_admin import storage

class StorageService:
    """
    분석 대상 이미지의 표시용 참조(URL)를 만들어 주는 서비스 클래스입니다.
    Firebase Storage 버킷이 설정되어 있으면 이미지를 업로드하고 공개 URL을 돌려주며,
    설정이 없으면 같은 이미지를 담은 data URL을 돌려줍니다.
    """

    def __init__(self):
        """
        클래스 인스턴스 생성 시 버킷을 None으로 초기화합니다.
        실제 버킷 객체는 init_app 메서드를 통해 주입됩니다.
        """
        self.bucket = None

    def init_app(self, app: Flask):
        """
        Flask 앱 초기화 과정에서 호출되어 Storage 버킷을 설정합니다.

        :param app: Flask 애플리케이션 객체
        """
        bucket_name = app.config.get('FIREBASE_STORAGE_BUCKET')
        if not bucket_name:
            logging.warning("StorageService: FIREBASE_STORAGE_BUCKET이 없어 이미지를 data URL로 참조합니다.")
            return

        self.bucket = storage.bucket(bucket_name)
        logging.info("StorageService: Firebase Storage 서비스가 성공적으로 초기화되었습니다.")

    def store_image(self, image: bytes, content_type: str, plant_id: str) -> str:
        """
        분석할 이미지를 저장하고 화면에 표시할 수 있는 URL을 반환합니다.

        :param image: 업로드된 이미지 바이트
        :param content_type: 이미지 MIME 타입 (예: "image/jpeg")
        :param plant_id: 이미지가 속한 식물 프로필 ID (저장 경로에 사용)
        :return: 공개 URL 또는 data URL
        """
        if not self.bucket:
            return build_data_url(image, content_type)

        extension = (mimetypes.guess_extension(content_type) or '.jpg').lstrip('.')
        destination_blob_name = f"plant_images/{plant_id}/{uuid.uuid4()}.{extension}"
        blob = self.bucket.blob(destination_blob_name)

        try:
            blob.upload_from_string(image, content_type=content_type)
            blob.make_public()
            return blob.public_url
        except Exception as e:
            logging.error(f"이미지 업로드 실패 ({destination_blob_name}): {e}", exc_info=True)
            raise


def build_data_url(image: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(image).decode('ascii')}"
