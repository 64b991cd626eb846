# app/__init__.py

# =====================================================================================
# 1. 환경 변수 로드 (가장 먼저 실행)
# =====================================================================================
from dotenv import load_dotenv
load_dotenv()

# =====================================================================================
# 2. 모듈 임포트 (Module Imports)
# =====================================================================================
import os
import logging
from flask import Flask, jsonify
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException
import firebase_admin
from firebase_admin import credentials

# - 설정 및 도메인 예외
from app.core.config import config_by_name
from app.core.exceptions import NotFoundError, PreconditionError

# - API 블루프린트
from app.api.plants.routes import plants_bp

# - 서비스 모듈
from app.services.storage_service import StorageService
from app.services.openai_service import OpenAIService
from app.services.firestore_service import FirestoreProfileRepository
from app.services.history_store import AnalysisHistoryStore
from app.services.stream_ingestion import StreamIngestionEngine

def create_app(config_name=None, services=None):
    """
    Flask 애플리케이션 팩토리 함수.

    :param config_name: 'development' | 'testing' | 'production' (없으면 FLASK_ENV)
    :param services: 미리 만들어 둔 서비스 인스턴스 (테스트에서 가짜 추론 백엔드 등을 주입할 때 사용)
    """
    # =====================================================================================
    # 3. Flask 앱 생성 및 기본 설정
    # =====================================================================================
    config_name = config_name or os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    app.json.ensure_ascii = False

    if not app.debug and not app.testing:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]')

    # =====================================================================================
    # 4. 외부 서비스 초기화 (Firebase는 설정된 경우에만)
    # =====================================================================================
    firebase_enabled = _init_firebase(app)

    # =====================================================================================
    # 5. 서비스 인스턴스 생성 및 'app.services'에 저장 (의존성 주입)
    # =====================================================================================
    app.services = dict(services or {})

    # 5-1. 다른 서비스의 기반이 되는 공용 서비스
    if 'storage' not in app.services:
        storage_instance = StorageService()
        if firebase_enabled:
            storage_instance.init_app(app)
        app.services['storage'] = storage_instance

    if 'inference' not in app.services:
        try:
            openai_instance = OpenAIService()
            openai_instance.init_app(app)
            app.services['inference'] = openai_instance
            logging.info("OpenAI service initialized successfully")
        except Exception as e:
            logging.error(f"Failed to initialize OpenAI service: {e}")
            raise

    # 5-2. 식물 프로필/분석 이력 저장소 (앱당 1개)
    if 'history' not in app.services:
        repository = FirestoreProfileRepository() if firebase_enabled else None
        history_store = AnalysisHistoryStore(repository=repository)
        history_store.load()
        app.services['history'] = history_store
        if not repository:
            logging.warning("Firebase가 설정되지 않아 식물 프로필은 프로세스 메모리에만 보관됩니다.")

    # 5-3. 추론 백엔드를 감싸는 스트림 수집 엔진
    if 'ingestion' not in app.services:
        app.services['ingestion'] = StreamIngestionEngine(app.services['inference'])

    # =====================================================================================
    # 6. 블루프린트 등록
    # =====================================================================================
    app.register_blueprint(plants_bp, url_prefix='/api/plants')

    # =====================================================================================
    # 7. 전역 에러 핸들러 설정
    # =====================================================================================
    @app.errorhandler(ValidationError)
    def handle_marshmallow_validation(err):
        response = {"error_code": "VALIDATION_ERROR", "details": err.messages}
        return jsonify(response), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(err):
        return jsonify({"error_code": err.error_code, "message": str(err)}), 404

    @app.errorhandler(PreconditionError)
    def handle_precondition(err):
        return jsonify({"error_code": err.error_code, "message": str(err)}), 409

    @app.errorhandler(Exception)
    def handle_generic_exception(err):
        if isinstance(err, HTTPException):
            return err
        # 다른 핸들러에서 처리되지 않은 모든 예외를 여기서 처리
        logging.error(f"An unhandled exception occurred: {err}", exc_info=True)
        response = {"error_code": "INTERNAL_SERVER_ERROR", "message": "서버 내부에서 예상치 못한 오류가 발생했습니다."}
        return jsonify(response), 500

    logging.info(f"Flask app created for '{config_name}' environment.")

    return app


def _init_firebase(app: Flask) -> bool:
    """Firebase 인증 파일이 설정되어 있으면 Firebase 앱을 초기화하고 True를 반환합니다."""
    cred_path = app.config.get('FIREBASE_CREDENTIALS_PATH')
    if not cred_path:
        return False

    if not firebase_admin._apps:
        if not os.path.exists(cred_path):
            raise FileNotFoundError(f"Firebase 인증 파일을 찾을 수 없습니다: {cred_path}")
        cred = credentials.Certificate(cred_path)
        options = {}
        if app.config.get('FIREBASE_STORAGE_BUCKET'):
            options['storageBucket'] = app.config['FIREBASE_STORAGE_BUCKET']
        firebase_admin.initialize_app(cred, options)
        logging.info("Firebase initialized successfully")
    return True
