from pydantic_settings import BaseSettings
from typing import Optional
import os


class Settings(BaseSettings):
    openrouter_api_key: str = os.getenv("OPENROUTER_API_KEY", "")
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")

    # "memory" keeps guides and usage in-process, "supabase" persists them
    guide_store: str = os.getenv("GUIDE_STORE", "memory")

    text_model: str = "google/gemini-2.5-flash"
    image_model: str = "google/gemini-2.5-flash-image-preview"
    text_timeout_seconds: float = 45.0
    image_timeout_seconds: float = 30.0
    web_grounding: bool = True

    text_max_attempts: int = 2
    retry_delay_seconds: float = 2.0

    free_guide_limit: int = 1
    premium_subjects: str = ""

    # Unset means "as long as one full generation can take"
    coalesce_wait_seconds: Optional[float] = None
    coalesce_poll_seconds: float = 0.5
    reservation_lease_seconds: Optional[float] = None
    # Step count assumed when sizing the generation budget
    budget_steps: int = 12

    site_url: Optional[str] = "https://spotonauto.com"

    class Config:
        env_file = ".env"
        extra = "allow"

    @property
    def generation_budget_seconds(self) -> float:
        """Worst case for one generation: every text attempt times out, then every step image does"""
        text = self.text_max_attempts * self.text_timeout_seconds
        delays = max(self.text_max_attempts - 1, 0) * self.retry_delay_seconds
        return text + delays + self.budget_steps * self.image_timeout_seconds

    @property
    def coalesce_wait(self) -> float:
        if self.coalesce_wait_seconds is not None:
            return self.coalesce_wait_seconds
        return self.generation_budget_seconds

    @property
    def reservation_lease(self) -> float:
        if self.reservation_lease_seconds is not None:
            return self.reservation_lease_seconds
        return self.generation_budget_seconds + 60.0

    @property
    def premium_subject_ids(self) -> set[str]:
        return {s.strip() for s in self.premium_subjects.split(",") if s.strip()}


settings = Settings()
