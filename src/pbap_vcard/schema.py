from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class ContactRow(Base):
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True)
    display_name = Column(String, index=True)
    family = Column(String)
    given = Column(String)
    middle = Column(String)
    prefix = Column(String)
    suffix = Column(String)
    nickname = Column(String)
    org = Column(String)
    title = Column(String)
    note = Column(Text)
    bday = Column(String)
    photo = Column(LargeBinary)
    visible = Column(Boolean, nullable=False, default=True)

    data = relationship(
        "ContactDataRow",
        order_by="ContactDataRow.id",
        cascade="all, delete-orphan",
        back_populates="contact",
    )


class ContactDataRow(Base):
    __tablename__ = "contact_data"

    id = Column(Integer, primary_key=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False, index=True)
    kind = Column(String, nullable=False)   # phone, email, address, url, im, sip
    label = Column(String)                  # CELL, HOME, WORK ...
    value = Column(Text, nullable=False)    # address rows hold a JSON object

    contact = relationship("ContactRow", back_populates="data")


class CallRow(Base):
    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    number = Column(String)
    cached_name = Column(String)
    presentation = Column(Integer, nullable=False, default=1)
    type = Column(Integer, nullable=False, index=True)
    date = Column(Integer, nullable=False, default=0)
