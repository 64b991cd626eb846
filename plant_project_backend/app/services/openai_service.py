# app/services/openai_service.py
import base64
import json
import logging
from typing import Optional, Dict, Any, Iterator
from flask import Flask
from openai import OpenAI

DIAGNOSIS_SYSTEM_PROMPT = """You are an expert plant pathologist and botanist.
Analyze the plant in the photo and answer with a single JSON object and nothing else.
The JSON object must contain exactly these fields:
- "plantName": string, common name of the plant
- "isHealthy": boolean
- "diseaseName": string, empty string if the plant is healthy
- "description": string, short explanation of the diagnosis
- "treatmentSuggestions": array of strings
- "benefits": array of strings, benefits or uses of this plant
- "confidenceScore": number between 0 and 1
- "preventativeCareTips": array of strings
- "progressAssessment": one of "Improved", "Worsened", "Unchanged", "N/A"
- "comparativeAnalysis": string
- "pestIdentification": array of {"name": string, "description": string, "remedy": array of strings}
- "nutrientDeficiencies": array of {"name": string, "description": string, "remedy": array of strings}
Use empty arrays when nothing was found."""


class OpenAIService:
    """
    OpenAI API 연동을 담당하는 서비스 클래스.
    식물 사진과 재배 환경 정보를 보내고, 진단 결과(JSON)를 조각 단위 스트림으로 받아옵니다.
    StreamIngestionEngine의 추론 백엔드로 사용됩니다.
    """

    def __init__(self):
        """
        OpenAI 클라이언트를 None으로 초기화합니다.
        실제 클라이언트는 init_app 메서드를 통해 설정됩니다.
        """
        self.client = None
        self.model = None

    def init_app(self, app: Flask):
        """
        Flask 앱 초기화 과정에서 호출되어 OpenAI 클라이언트를 설정합니다.

        :param app: Flask 애플리케이션 객체
        """
        api_key = app.config.get('OPENAI_API_KEY')
        if not api_key:
            raise ValueError("OPENAI_API_KEY 설정이 .env 파일에 필요합니다.")

        # timeout은 조각 사이의 최대 대기 시간(read timeout)으로도 적용됩니다.
        # 재시도는 호출자 정책이므로 SDK 자동 재시도는 끕니다.
        self.client = OpenAI(
            api_key=api_key,
            timeout=app.config.get('STREAM_IDLE_TIMEOUT', 60.0),
            max_retries=0
        )
        self.model = app.config.get('OPENAI_MODEL', 'gpt-4o-mini')
        logging.info(f"OpenAIService: OpenAI API 서비스가 성공적으로 초기화되었습니다. (model: {self.model})")

    def stream_diagnosis(self, request) -> Iterator[str]:
        """
        진단 요청을 보내고 응답 텍스트 조각을 도착 순서대로 yield 합니다.
        연결/네트워크 오류는 SDK 예외 그대로 전파되며, 호출자(StreamIngestionEngine)가 TransportError로 변환합니다.

        :param request: InferenceRequest (이미지, 환경 정보, 직전 기록 요약)
        """
        if not self.client:
            raise RuntimeError("OpenAIService가 초기화되지 않았습니다. init_app을 먼저 호출해주세요.")

        stream = self.client.chat.completions.create(
            model=self.model,
            messages=self._build_messages(request),
            response_format={"type": "json_object"},
            stream=True
        )
        try:
            for chunk in stream:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    yield text
        finally:
            # 호출자가 중간에 스트림을 버린 경우에도 HTTP 응답을 닫습니다.
            stream.close()

    def _build_messages(self, request) -> list:
        image_b64 = base64.b64encode(request.image).decode('ascii')
        return [
            {"role": "system", "content": DIAGNOSIS_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {
                        "type": "text",
                        "text": self._build_diagnosis_prompt(request.context, request.previous_summary)
                    },
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{request.mime_type};base64,{image_b64}"}
                    }
                ]
            }
        ]

    def _build_diagnosis_prompt(self, context: Dict[str, Any], previous_summary: Optional[Dict[str, Any]]) -> str:
        """
        재배 환경 정보와 직전 분석 요약으로 진단 프롬프트를 구성합니다.

        :param context: 직렬화된 EnvironmentalData
        :param previous_summary: 직전 분석 기록 요약 (없으면 None)
        :return: 완성된 프롬프트 문자열
        """
        base_prompt = (
            "Diagnose the health of the plant in this image.\n"
            f"Growing conditions reported by the owner (JSON): {json.dumps(context, ensure_ascii=False)}"
        )
        if context.get('organicPreference'):
            base_prompt += "\nThe owner prefers organic treatments only; recommend organic remedies."

        if previous_summary:
            return base_prompt + (
                "\n\nThis plant was analyzed before. Previous analysis summary (JSON): "
                f"{json.dumps(previous_summary, ensure_ascii=False)}\n"
                "Compare the current state with the previous analysis. Set \"progressAssessment\" to "
                "\"Improved\", \"Worsened\" or \"Unchanged\" and explain the change in \"comparativeAnalysis\"."
            )
        else:
            return base_prompt + (
                "\n\nThis is the first analysis of this plant. Set \"progressAssessment\" to \"N/A\" "
                "and \"comparativeAnalysis\" to an empty string."
            )
