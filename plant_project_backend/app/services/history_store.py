# app/services/history_store.py
import logging
import threading
import uuid
from typing import Dict, List, Optional

from app.core.exceptions import NotFoundError
from app.models.plant_profile import PlantProfile, AnalysisRecord


class AnalysisHistoryStore:
    """
    식물 프로필과 각 프로필의 분석 이력을 소유하는 저장소.

    - 프로필은 불변 객체이며, append 시 새 기록이 붙은 프로필로 통째로 교체됩니다.
      따라서 읽는 쪽은 항상 append 이전 또는 이후의 완전한 이력만 보게 됩니다.
    - 같은 프로필에 대한 append는 프로필별 lock으로 직렬화됩니다.
    - repository가 주입되면 생성/추가 내용을 먼저 영속화한 뒤 메모리에 반영합니다.
      (load_profiles, save_profile, append_record 메서드를 가진 객체)
    """

    def __init__(self, repository=None):
        self.repository = repository
        self._profiles: Dict[str, PlantProfile] = {}
        self._profile_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def load(self) -> int:
        """repository에 저장된 프로필을 메모리로 불러옵니다. 앱 시작 시 한 번 호출됩니다."""
        if not self.repository:
            return 0
        profiles = self.repository.load_profiles()
        with self._registry_lock:
            for profile in profiles:
                self._profiles[profile.id] = profile
                self._profile_locks.setdefault(profile.id, threading.Lock())
        logging.info(f"AnalysisHistoryStore: {len(profiles)} plant profiles loaded.")
        return len(profiles)

    def create_profile(self, name: str) -> PlantProfile:
        """빈 분석 이력을 가진 새 식물 프로필을 생성합니다."""
        if not name or not name.strip():
            raise ValueError("식물 이름은 비어 있을 수 없습니다.")

        profile = PlantProfile(id=str(uuid.uuid4()), name=name.strip())
        if self.repository:
            self.repository.save_profile(profile)

        with self._registry_lock:
            self._profiles[profile.id] = profile
            self._profile_locks[profile.id] = threading.Lock()
        logging.info(f"Plant profile created: {profile.id} ('{profile.name}')")
        return profile

    def get_profile(self, profile_id: str) -> PlantProfile:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise NotFoundError(f"해당 ID의 식물을 찾을 수 없습니다: {profile_id}")
        return profile

    def list_profiles(self) -> List[PlantProfile]:
        with self._registry_lock:
            return list(self._profiles.values())

    def append(self, profile_id: str, record: AnalysisRecord) -> PlantProfile:
        """
        분석 기록을 프로필 이력의 맨 뒤에 추가합니다. 이력을 변경하는 유일한 경로입니다.

        :raises NotFoundError: 존재하지 않는 프로필 ID
        """
        lock = self._profile_locks.get(profile_id)
        if lock is None:
            raise NotFoundError(f"해당 ID의 식물을 찾을 수 없습니다: {profile_id}")

        with lock:
            current = self.get_profile(profile_id)
            if self.repository:
                self.repository.append_record(profile_id, record)
            updated = current.with_record(record)
            self._profiles[profile_id] = updated

        logging.info(f"Analysis {record.id} appended to plant {profile_id} "
                     f"(history length: {len(updated.analysis_history)})")
        return updated

    def most_recent(self, profile_id: str) -> Optional[AnalysisRecord]:
        """가장 최근 분석 기록을 반환합니다. 이력이 비어 있으면 None."""
        return self.get_profile(profile_id).latest_record
