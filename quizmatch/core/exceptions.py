"""
异常定义
选题引擎各层抛出的错误类型
"""


class QuizMatchError(Exception):
    """所有业务异常的基类"""


class UnknownRatingSystem(QuizMatchError, KeyError):
    """评分系统名称未在注册表中登记"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"未知的评分系统: {name}")

    def __str__(self) -> str:
        return self.args[0]


class UnknownMatchmakingStrategy(QuizMatchError, KeyError):
    """选题策略名称未在注册表中登记"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"未知的选题策略: {name}")

    def __str__(self) -> str:
        return self.args[0]


class ConfigurationDeserializationFailure(QuizMatchError, ValueError):
    """持久化的配置文本无法解析"""


class InvalidConfiguration(QuizMatchError, ValueError):
    """配置项取值不合法"""

    def __init__(self, key: str, value, reason: str):
        self.key = key
        self.value = value
        super().__init__(f"配置项 {key}={value!r} 不合法: {reason}")


class PersistenceFailure(QuizMatchError):
    """底层存储读写失败，可重试"""


class NoActiveRatingSystem(QuizMatchError):
    """测评实例尚未选择评分系统"""

    def __init__(self, assessment_id: int):
        self.assessment_id = assessment_id
        super().__init__(f"测评 {assessment_id} 尚未配置评分系统")


class NoPendingAttempt(QuizMatchError):
    """作答结果没有对应的待作答记录（题目未出给该学习者或已记录过）"""

    def __init__(self, user_id: int, question_id: int):
        self.user_id = user_id
        self.question_id = question_id
        super().__init__(f"学习者 {user_id} 没有题目 {question_id} 的待作答记录")
