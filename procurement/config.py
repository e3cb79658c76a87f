from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Persistence
    database_url: str = "sqlite:///./procurement.sqlite3"

    # Amazon cart automation service
    cart_dispatch_base_url: str = "http://127.0.0.1:8002/v1"
    cart_dispatch_timeout_seconds: float = 120.0
    auto_purchase_on_cart_success: bool = True

    # Product metadata service
    metadata_service_url: str = "http://127.0.0.1:8003/v1"
    metadata_timeout_seconds: float = 15.0

    default_currency: str = "MXN"

    # Shared secret the cart automation sends in X-Cart-Callback-Token;
    # callbacks are refused while it is empty
    cart_callback_token: str = ""

    class Config:
        env_file = ".env"
        env_prefix = "PROCUREMENT_"


settings = Settings()
