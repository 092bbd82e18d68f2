"""cadence -- 后台任务队列与义务事项提醒/升级引擎"""

__version__ = "0.1.0"
