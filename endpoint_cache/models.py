from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index,
    Integer, JSON, String, Text, func,
)
from endpoint_cache.database import Base


class Server(Base):
    __tablename__ = "servers"

    id          = Column(Integer, primary_key=True)
    name        = Column(String(200), nullable=False)
    url         = Column(String(500), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    is_active   = Column(Boolean, nullable=False, default=True)
    created_at  = Column(DateTime(timezone=True), server_default=func.now())
    updated_at  = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ServerToken(Base):
    __tablename__ = "server_tokens"

    id          = Column(Integer, primary_key=True)
    server_url  = Column(String(500), ForeignKey("servers.url", ondelete="CASCADE"), nullable=False)
    token_name  = Column(String(200), nullable=False)
    token_value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    is_active   = Column(Boolean, nullable=False, default=True)
    created_at  = Column(DateTime(timezone=True), server_default=func.now())
    updated_at  = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_token_server", "server_url", "is_active"),
    )


class ApiEndpoint(Base):
    __tablename__ = "api_endpoints"

    id             = Column(Integer, primary_key=True)
    server_url     = Column(String(500), ForeignKey("servers.url", ondelete="CASCADE"), nullable=False)
    name           = Column(String(200), nullable=False)
    path           = Column(String(1000), nullable=False)
    method         = Column(String(10), nullable=False, default="GET")
    description    = Column(Text, nullable=True)
    params         = Column(JSON, nullable=True)
    headers        = Column(JSON, nullable=True)
    cache_duration = Column(Integer, nullable=False, default=0)   # seconds, 0 = never cache
    is_active      = Column(Boolean, nullable=False, default=True)
    sort_order     = Column(Integer, nullable=False, default=0)
    created_at     = Column(DateTime(timezone=True), server_default=func.now())
    updated_at     = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_endpoint_server", "server_url", "sort_order"),
    )


class ApiCache(Base):
    __tablename__ = "api_cache"

    id          = Column(Integer, primary_key=True)
    endpoint_id = Column(Integer, ForeignKey("api_endpoints.id", ondelete="CASCADE"), nullable=False)
    cache_key   = Column(String(200), nullable=False, unique=True)
    data        = Column(JSON, nullable=True)
    created_at  = Column(DateTime(timezone=True), nullable=False)
    expires_at  = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_cache_endpoint", "endpoint_id"),
        Index("ix_cache_expires", "expires_at"),
    )
