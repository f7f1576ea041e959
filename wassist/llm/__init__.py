from .chat import OpenAIChatModel
from .factory import ChatLLMFactory
