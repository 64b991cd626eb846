# app/core/config.py

import os # 환경 변수를 읽기 위해 사용합니다.

class Config:
    """모든 환경 설정의 기반이 되는 공통 설정 클래스입니다."""
    # 진단 결과를 스트리밍으로 생성하는 OpenAI 모델 설정
    OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
    OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
    # 다음 조각(fragment)이 이 시간(초) 안에 도착하지 않으면 연결 실패로 처리합니다.
    STREAM_IDLE_TIMEOUT = float(os.getenv('STREAM_IDLE_TIMEOUT', 60))

    # 업로드 이미지 최대 크기 (기본 10MB). Flask가 요청 본문 크기 제한으로도 사용합니다.
    MAX_IMAGE_BYTES = int(os.getenv('MAX_IMAGE_BYTES', 10 * 1024 * 1024))
    MAX_CONTENT_LENGTH = MAX_IMAGE_BYTES + 1024 * 1024

    # Firebase 설정이 없으면 식물 프로필은 프로세스 메모리에만 보관되고, 이미지 참조는 data URL로 남습니다.
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')
    FIREBASE_STORAGE_BUCKET = os.getenv('FIREBASE_STORAGE_BUCKET')

class DevelopmentConfig(Config):
    """개발 환경을 위한 설정 클래스입니다."""
    DEBUG = True
    FIREBASE_CREDENTIALS_PATH = os.getenv('DEV_FIREBASE_CREDENTIALS_PATH', Config.FIREBASE_CREDENTIALS_PATH)

class TestingConfig(Config):
    """테스트 환경을 위한 설정 클래스입니다. 외부 서비스(Firebase)는 사용하지 않습니다."""
    TESTING = True
    DEBUG = False
    OPENAI_API_KEY = 'test-key'
    FIREBASE_CREDENTIALS_PATH = None
    FIREBASE_STORAGE_BUCKET = None

class ProductionConfig(Config):
    """운영 환경 설정 클래스입니다."""
    DEBUG = False

# FLASK_ENV 값에 따라 create_app에서 적절한 설정 클래스를 선택합니다.
config_by_name = dict(
    development=DevelopmentConfig,
    testing=TestingConfig,
    production=ProductionConfig
)
