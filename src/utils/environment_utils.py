from dotenv import load_dotenv
import os

# Utils
from utils.log_utils import LogUtil

"""
Utility class for environment variables
"""
class EnvironmentUtils:
    def __init__(self, log_util: LogUtil):

        # Load environment variables
        load_dotenv()

        # Initialize logger
        self.log_util = log_util

        # Environment variables
        self.env_variables = {
            "APP_ENV": os.getenv("APP_ENV", "production"),
            "HOST": os.getenv("HOST", "0.0.0.0"),
            "PORT": int(os.getenv("PORT", "8020")),
            "ORG_ID": os.getenv("ORG_ID", "ConversationFlow"),
            "LOKI_URL": os.getenv("LOKI_URL", ""),
            "MONGO_USERNAME": os.getenv("MONGO_USERNAME", ""),
            "MONGO_PASSWORD": os.getenv("MONGO_PASSWORD", ""),
            "MONGO_AUTH_SOURCE": os.getenv("MONGO_AUTH_SOURCE", "admin"),
            "MONGO_HOST": os.getenv("MONGO_HOST", "localhost"),
            "MONGO_PORT": int(os.getenv("MONGO_PORT", "27017")),
            "MONGO_DB_NAME": os.getenv("MONGO_DB_NAME", "conversation_flow_db"),
            # Business action service (transactions, notifications)
            "ACTION_SERVICE_URL": os.getenv("ACTION_SERVICE_URL", "http://localhost:8021/actions"),
            # Static fallback processor, empty means answer with the built-in notice
            "STATIC_PROCESSOR_URL": os.getenv("STATIC_PROCESSOR_URL", ""),
            "HTTP_TIMEOUT_SECONDS": float(os.getenv("HTTP_TIMEOUT_SECONDS", "10")),
            "MAX_AUTO_ADVANCE_STEPS": int(os.getenv("MAX_AUTO_ADVANCE_STEPS", "25")),
            "DEBUG": os.getenv("DEBUG", "false"),
        }

    def get_env_variable(self, variable_name: str) -> str | int | float:
        if variable_name not in self.env_variables:
            self.log_util.error(service_name="EnvironmentUtils", message=f"Environment variable {variable_name} not found")
            raise ValueError(f"Environment variable {variable_name} not found")
        return self.env_variables[variable_name]
