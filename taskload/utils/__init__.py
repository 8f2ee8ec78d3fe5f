"""
描述: 通用工具函数子包。
主要功能:
    - 聚合日志、异常、指标等基础工具
    - 为分发模块提供共享底层能力
"""
