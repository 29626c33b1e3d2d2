"""排队系统异常定义。

所有可预期的业务/存储失败都派生自 ``QueueDeskError``，
上层（Web 接口）据此映射为用户可见的错误提示。
"""


class QueueDeskError(Exception):
    """所有排队系统错误的基类。"""


class InvalidTransition(QueueDeskError):
    """当前状态不允许该操作，或该理发师已有进行中的顾客，或试用额度已用完。"""


class EntryNotFound(InvalidTransition):
    """目标排队记录不存在。"""


class TrialExhausted(InvalidTransition):
    """试用额度已用完，不能开始新的服务。"""


class ConcurrentModification(InvalidTransition):
    """记录在读取之后已被其他会话修改。"""


class NoBarberAssigned(QueueDeskError):
    """排队记录没有分配理发师，无法重新排队或修改理发师。"""


class DependencyInUse(QueueDeskError):
    """理发师或服务仍被历史排队记录引用，拒绝删除。"""


class StoreUnavailable(QueueDeskError):
    """数据库调用失败（网络或可用性问题）。"""


class UploadFailed(QueueDeskError):
    """头像上传到对象存储失败。"""


class RecordNotFound(QueueDeskError):
    """店铺、理发师或服务不存在。"""


class FunctionInvocationError(QueueDeskError):
    """调用云函数（支付门户、远程统计）失败。"""
