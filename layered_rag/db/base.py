"""
SQLAlchemy ORM 基类定义

所有数据库模型都必须继承自这个 Base 类。
SQLAlchemy 通过 Base.metadata 收集所有模型的表结构信息，
用于自动创建表、生成迁移脚本等。
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """声明式基类"""
    pass
