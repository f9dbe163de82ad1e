"""
数据库模型基类（SQLAlchemy 2.0 风格）
"""
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase


# 约束/索引命名保持稳定，便于在不同数据库之间迁移表结构
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_N_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


metadata = Base.metadata
