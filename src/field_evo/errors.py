"""异常定义 / Exception hierarchy"""


class FieldEvoError(Exception):
    """FieldEvo 异常基类 / Base exception"""


class RunConfigurationError(FieldEvoError):
    """运行无法开始（无字段、字段不存在等）/ The run cannot start"""


class GatewayError(FieldEvoError):
    """外部网关调用失败或超时 / An external gateway call failed or timed out"""

    def __init__(self, message: str, *, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class PromptParseError(GatewayError):
    """无法从改写响应中解析出提示词 / Completion response carried no usable prompt"""
