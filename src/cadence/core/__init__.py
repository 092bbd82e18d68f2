"""cadence Core -- 领域模型、配置与持久化"""
