"""
核心模块
数据模型、异常、实现加载器与测评引擎
"""
