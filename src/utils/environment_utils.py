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
            "PORT": int(os.getenv("PORT", "8018")),
            "ORG_ID": os.getenv("ORG_ID", "FlowEngine"),
            "LOKI_URL": os.getenv("LOKI_URL", ""),
            "MONGO_USERNAME": os.getenv("MONGO_USERNAME", "flowengine"),
            "MONGO_PASSWORD": os.getenv("MONGO_PASSWORD", ""),
            "MONGO_AUTH_SOURCE": os.getenv("MONGO_AUTH_SOURCE", "admin"),
            "MONGO_HOST": os.getenv("MONGO_HOST", "localhost"),
            "MONGO_PORT": int(os.getenv("MONGO_PORT", "27017")),
            "MONGO_DB_NAME": os.getenv("MONGO_DB_NAME", "flow_engine_db"),
            # Messaging gateway
            "GRAPH_API_URL": os.getenv("GRAPH_API_URL", "https://graph.facebook.com/v21.0"),
            "GATEWAY_TIMEOUT_SECONDS": float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30")),
            "MESSAGE_INTERVAL_SECONDS": float(os.getenv("MESSAGE_INTERVAL_SECONDS", "1.0")),
            # AI provider defaults, used when the flow owner has no profile settings
            "DEFAULT_AI_PROVIDER": os.getenv("DEFAULT_AI_PROVIDER", "default"),
            "DEFAULT_AI_MODEL": os.getenv("DEFAULT_AI_MODEL", "google/gemini-2.5-flash"),
            "DEFAULT_AI_API_KEY": os.getenv("DEFAULT_AI_API_KEY", ""),
            "DEFAULT_AI_URL": os.getenv("DEFAULT_AI_URL", "https://ai.gateway.lovable.dev/v1/chat/completions"),
            "OPENAI_API_URL": os.getenv("OPENAI_API_URL", "https://api.openai.com/v1/chat/completions"),
            "GEMINI_API_URL": os.getenv("GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta/models"),
            "DEBUG": os.getenv("DEBUG", "false"),
        }

    def get_env_variable(self, variable_name: str) -> str | int | float:
        if variable_name not in self.env_variables:
            self.log_util.error(service_name="EnvironmentUtils", message=f"Environment variable {variable_name} not found")
            raise ValueError(f"Environment variable {variable_name} not found")
        return self.env_variables[variable_name]
