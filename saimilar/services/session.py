"""Per-session context: settings, signed-in profile and test mode."""

from dataclasses import dataclass, field

from saimilar.models.schemas import AppSettings, UserProfile


@dataclass
class SessionContext:
    settings: AppSettings = field(default_factory=AppSettings)
    profile: UserProfile | None = None
    test_mode: bool = False
    test_models: list[str] = field(default_factory=list)

    @property
    def is_authenticated(self) -> bool:
        return self.profile is not None

    @property
    def user_id(self) -> int | None:
        return self.profile.id if self.profile else None

    @property
    def language(self) -> str:
        return self.settings.language

    @property
    def active_model(self) -> str:
        return self.settings.active_model
