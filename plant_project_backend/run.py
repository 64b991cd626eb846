# run.py
from dotenv import load_dotenv
import os
basedir = os.path.abspath(os.path.dirname(__file__))
# 이 디렉터리 안의 '.env' 파일을 앱 생성 전에 로드합니다.
load_dotenv(dotenv_path=os.path.join(basedir, '.env'))

from app import create_app

app = create_app()

if __name__ == '__main__':
    host = os.getenv('FLASK_RUN_HOST', '127.0.0.1')
    port = int(os.getenv('FLASK_RUN_PORT', 5000))
    debug = app.config.get('DEBUG', False)
    # 분석 응답을 스트리밍하는 동안 다른 요청도 처리할 수 있도록 threaded 모드로 실행합니다.
    app.run(host=host, port=port, debug=debug, threaded=True)
