"""
quizmatch
基于ELO评分的自适应选题引擎
"""

__version__ = '0.1.0'
