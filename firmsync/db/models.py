# firmsync/db/models.py
from sqlalchemy.orm import declarative_base
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

Base = declarative_base()

# ─────────────────────────────────────────────────────────────────────────────
# Таблицы движка автоматизации
# ─────────────────────────────────────────────────────────────────────────────

class AutomationRuleRow(Base):
    __tablename__ = "ittt_rules"
    tenant_id = Column(String(64), primary_key=True)
    id = Column(String(128), primary_key=True)
    name = Column(String(255))
    description = Column(Text, nullable=True)
    trigger_type = Column(String(64), index=True)
    conditions = Column(Text, default="[]")       # JSON-массив условий
    actions = Column(Text, default="[]")          # JSON-массив действий
    is_active = Column(Boolean, default=True, index=True)
    priority = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class ExecutionRecordRow(Base):
    """Аудит: одна строка = одно срабатывание правила. Только INSERT."""
    __tablename__ = "ittt_executions"
    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True)
    rule_id = Column(String(128), index=True)
    trigger_type = Column(String(64))
    context_snapshot = Column(Text)               # JSON контекста на момент срабатывания
    execution_status = Column(String(32), default="success")
    executed_at = Column(DateTime(timezone=True), index=True)


class ScheduledActionRow(Base):
    __tablename__ = "ittt_scheduled_actions"
    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), index=True)
    rule_id = Column(String(128))
    rule_name = Column(String(255))
    action_index = Column(Integer)
    action = Column(Text)                         # JSON действия
    context = Column(Text)                        # JSON контекста
    due_at = Column(DateTime(timezone=True), index=True)
    status = Column(String(16), default="pending", index=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), nullable=True)


# ─────────────────────────────────────────────────────────────────────────────
# Данные практики, которые трогают действия
# ─────────────────────────────────────────────────────────────────────────────

class TaskRow(Base):
    __tablename__ = "tasks"
    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), index=True)
    title = Column(String(255))
    description = Column(Text, nullable=True)
    assigned_to = Column(String(128), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(32), default="pending")
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), nullable=True)


class ActivityLogRow(Base):
    __tablename__ = "activity_logs"
    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True)
    entity_type = Column(String(64))
    entity_id = Column(String(128), index=True)
    activity_type = Column(String(64))
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), index=True)


class ClientRow(Base):
    __tablename__ = "clients"
    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), index=True)
    name = Column(String(255))
    email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    status = Column(String(32), nullable=True)
    source = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), nullable=True)


class CaseRow(Base):
    __tablename__ = "cases"
    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), index=True)
    client_id = Column(String(36), index=True, nullable=True)
    title = Column(String(255))
    case_type = Column(String(64), nullable=True)
    status = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), nullable=True)
