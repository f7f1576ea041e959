class WassistError(Exception):
    """Base exception for wassist errors"""
    def __init__(self, msg: str):
        self.msg = msg

    def __str__(self):
        return self.msg

class LLMError(WassistError):
    pass

class NoChatLLMConfigError(LLMError):
    def __init__(self, msg: str | None = None):
        super().__init__(msg or "Can not find available Chat LLM Config")

class PlanNormalizationError(WassistError):
    """Raised when a raw planner response can not be repaired into a plan"""
    def __init__(self, reason: str, raw: str | None = None):
        self.reason = reason
        self.raw = raw
        super().__init__(f"Plan normalization failed: {reason}")

class ToolNotFoundError(WassistError):
    """Raised when a tool name is not part of the registry"""
    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}")

class ToolNotBoundError(WassistError):
    """Raised when a declared tool has no invocation bound to it"""
    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' is declared but not available")

class UnresolvedPlaceholderError(WassistError):
    """Raised when a step parameter references an output that does not exist"""
    def __init__(self, placeholder: str, step_number: int, reason: str):
        self.placeholder = placeholder
        self.step_number = step_number
        super().__init__(f"Can not resolve '{placeholder}': step {step_number} {reason}")

class ContextStoreError(WassistError):
    pass
