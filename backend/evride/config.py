from pydantic import SecretStr, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "EV Ride Rental"
    secret_key: SecretStr = SecretStr("super-secret-key-change-me")
    access_token_expire_minutes: int = 60 * 24 * 7
    database_url: str = "sqlite:///./evride.db"
    service_token: SecretStr = SecretStr("dev-service-token")

    # tariff
    base_fare: float = Field(default=10.0, ge=0)
    per_minute_charge: float = Field(default=2.0, ge=0)
    per_km_charge: float = Field(default=5.0, ge=0)
    carbon_saving_per_km: float = Field(default=0.108, ge=0)
    reservation_timeout_minutes: int = Field(default=5, ge=1)
    min_battery_for_reserve: float = Field(default=20.0, ge=0, le=100)
    max_wallet_top_up: float = Field(default=10000.0, gt=0)
    cashback_rate: float = Field(default=0.10, ge=0, le=1)
    estimate_speed_kmh: float = Field(default=20.0, gt=0)

    class Config:
        env_file = ".env"


settings = Settings()
