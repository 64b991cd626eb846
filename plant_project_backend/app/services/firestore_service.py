# app/services/firestore_service.py
import logging
from typing import List

from firebase_admin import firestore
from firebase_admin.firestore import Transaction
from marshmallow import ValidationError

from app.models.plant_profile import PlantProfile, AnalysisRecord
from app.schemas.plant_schema import PlantProfileSchema, AnalysisRecordSchema
from app.utils.datetime_utils import DateTimeUtils

# Firestore 문서에만 존재하는 관리용 필드
_BOOKKEEPING_FIELDS = ('created_at', 'updated_at')


class FirestoreProfileRepository:
    """
    AnalysisHistoryStore의 영속화 담당.
    'plant_profiles' 컬렉션에 프로필 1개당 문서 1개를 두고, 분석 이력은 문서 안의 배열로 보관합니다.
    """

    def __init__(self, collection_name: str = 'plant_profiles'):
        self.db = firestore.client()
        self.profiles_ref = self.db.collection(collection_name)
        self.collection_name = collection_name

    def load_profiles(self) -> List[PlantProfile]:
        profiles = []
        schema = PlantProfileSchema()
        for doc in self.profiles_ref.stream():
            data = DateTimeUtils.from_firestore(doc.to_dict())
            for key in _BOOKKEEPING_FIELDS:
                data.pop(key, None)
            try:
                profiles.append(schema.load(data))
            except ValidationError as err:
                # 손상된 문서 하나 때문에 전체 로딩을 중단하지 않습니다.
                logging.warning(f"Skipping invalid plant profile document {doc.id}: {err.messages}")
        return profiles

    def save_profile(self, profile: PlantProfile) -> None:
        data = PlantProfileSchema().dump(profile)
        data['created_at'] = DateTimeUtils.now()
        try:
            self.profiles_ref.document(profile.id).set(DateTimeUtils.for_firestore(data))
            logging.info(f"Firestore 저장 성공 (Collection: {self.collection_name}, Doc ID: {profile.id})")
        except Exception as e:
            logging.error(f"Firestore 저장 실패 (Collection: {self.collection_name}): {e}", exc_info=True)
            raise

    def append_record(self, profile_id: str, record: AnalysisRecord) -> None:
        """[트랜잭션] 분석 기록을 이력 배열의 맨 뒤에 추가합니다."""
        transaction = self.db.transaction()
        doc_ref = self.profiles_ref.document(profile_id)
        record_data = AnalysisRecordSchema().dump(record)

        @firestore.transactional
        def _append_in_transaction(transaction: Transaction):
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise FileNotFoundError(f"Firestore에 식물 프로필 문서가 없습니다: {profile_id}")
            history = list(snapshot.to_dict().get('analysisHistory') or [])
            history.append(record_data)
            transaction.update(doc_ref, {
                'analysisHistory': history,
                'updated_at': DateTimeUtils.now()
            })

        try:
            _append_in_transaction(transaction)
        except Exception as e:
            logging.error(f"Analysis append transaction failed for plant {profile_id}: {e}", exc_info=True)
            raise
