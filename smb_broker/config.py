import os
from dotenv import load_dotenv

load_dotenv()

BROKER_HOST = os.getenv("BROKER_HOST", "0.0.0.0")
BROKER_PORT = int(os.getenv("BROKER_PORT", "8080"))

HTTP_ENABLED = os.getenv("HTTP_ENABLED", "1") == "1"
HTTP_HOST = os.getenv("HTTP_HOST", "0.0.0.0")
HTTP_PORT = int(os.getenv("HTTP_PORT", "8081"))

# directory capacity, wildcard slot included
MAX_TOPICS = int(os.getenv("MAX_TOPICS", "10"))
MAX_SUBSCRIBERS = int(os.getenv("MAX_SUBSCRIBERS", "10"))

# topics must be strictly shorter than this
TOPIC_LENGTH = int(os.getenv("TOPIC_LENGTH", "20"))
MAX_DATAGRAM_SIZE = int(os.getenv("MAX_DATAGRAM_SIZE", "512"))

LOG_PACKET_TIMES = os.getenv("LOG_PACKET_TIMES", "1") == "1"
