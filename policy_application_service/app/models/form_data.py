"""
Form data of a policy application.

The form is a fixed set of section records. Each wizard step maps to the
sections it edits; the mapping is checked for totality at import time so a
new step cannot be added without deciding what it edits.
"""
from enum import IntEnum
from typing import Annotated, Dict, List, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .document import Document


class WizardStep(IntEnum):
    PERSONAL = 1
    EDUCATION_OCCUPATION = 2
    ADDRESS = 3
    FAMILY_HISTORY = 4
    NOMINEE = 5
    PREVIOUS_POLICIES = 6
    BANK = 7
    MEDICAL = 8
    DOCUMENTS = 9
    SUMMARY = 10

FIRST_STEP = WizardStep.PERSONAL
LAST_STEP = WizardStep.SUMMARY


class PersonalSection(BaseModel):
    section: Literal["personal"] = "personal"
    first_name: str = ""
    last_name: str = ""
    dob: str = "" # ISO date, YYYY-MM-DD
    gender: str = "Male"
    marital_status: str = "Single"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

class EducationOccupationSection(BaseModel):
    section: Literal["education_occupation"] = "education_occupation"
    education: str = ""
    occupation: str = ""
    annual_income: str = ""

class AddressSection(BaseModel):
    section: Literal["address"] = "address"
    phone: str = ""
    email: str = ""
    address_line1: str = ""
    address_line2: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""

class FamilyMember(BaseModel):
    member: str = "Father"
    status: str = "Living"
    age: str = ""
    cause: str = ""

class FamilyHistorySection(BaseModel):
    section: Literal["family_history"] = "family_history"
    members: List[FamilyMember] = Field(default_factory=list)

class NomineeSection(BaseModel):
    section: Literal["nominee"] = "nominee"
    name: str = ""
    relation: str = ""
    dob: str = ""
    share: str = "100"

class AppointeeSection(BaseModel):
    """Person acting for a minor nominee. Required only when the nominee is under age."""
    section: Literal["appointee"] = "appointee"
    name: str = ""
    relation: str = ""

class PreviousPolicy(BaseModel):
    policy_no: str = ""
    table_term: str = ""
    sum_assured: str = ""
    commencement_date: str = ""

class PreviousPoliciesSection(BaseModel):
    section: Literal["previous_policies"] = "previous_policies"
    policies: List[PreviousPolicy] = Field(default_factory=list)

class BankSection(BaseModel):
    section: Literal["bank"] = "bank"
    account_number: str = ""
    ifsc_code: str = ""
    bank_name: str = ""
    account_type: str = "Savings"

class MedicalSection(BaseModel):
    section: Literal["medical"] = "medical"
    height: str = ""
    weight: str = ""
    identification_mark: str = ""
    history_of_illness: str = "No"
    details_of_illness: str = ""


FormSection = Annotated[
    Union[
        PersonalSection,
        EducationOccupationSection,
        AddressSection,
        FamilyHistorySection,
        NomineeSection,
        AppointeeSection,
        PreviousPoliciesSection,
        BankSection,
        MedicalSection,
    ],
    Field(discriminator="section"),
]

form_section_adapter = TypeAdapter(FormSection)


class FormData(BaseModel):
    # Store metadata (id, owner, shared count) is never part of the form.
    model_config = ConfigDict(extra="ignore")

    personal: PersonalSection = Field(default_factory=PersonalSection)
    education_occupation: EducationOccupationSection = Field(default_factory=EducationOccupationSection)
    address: AddressSection = Field(default_factory=AddressSection)
    family_history: FamilyHistorySection = Field(default_factory=FamilyHistorySection)
    nominee: NomineeSection = Field(default_factory=NomineeSection)
    appointee: AppointeeSection = Field(default_factory=AppointeeSection)
    previous_policies: PreviousPoliciesSection = Field(default_factory=PreviousPoliciesSection)
    bank: BankSection = Field(default_factory=BankSection)
    medical: MedicalSection = Field(default_factory=MedicalSection)
    documents: List[Document] = Field(default_factory=list)


# Form fields edited on each step. Summary edits nothing.
STEP_SECTIONS: Dict[WizardStep, Tuple[str, ...]] = {
    WizardStep.PERSONAL: ("personal",),
    WizardStep.EDUCATION_OCCUPATION: ("education_occupation",),
    WizardStep.ADDRESS: ("address",),
    WizardStep.FAMILY_HISTORY: ("family_history",),
    WizardStep.NOMINEE: ("nominee", "appointee"),
    WizardStep.PREVIOUS_POLICIES: ("previous_policies",),
    WizardStep.BANK: ("bank",),
    WizardStep.MEDICAL: ("medical",),
    WizardStep.DOCUMENTS: ("documents",),
    WizardStep.SUMMARY: (),
}

_unmapped_steps = set(WizardStep) - set(STEP_SECTIONS)
if _unmapped_steps:
    raise RuntimeError(f"Wizard steps without a section mapping: {sorted(_unmapped_steps)}")
_unknown_fields = {name for names in STEP_SECTIONS.values() for name in names} - set(FormData.model_fields)
if _unknown_fields:
    raise RuntimeError(f"Step mapping names unknown form fields: {sorted(_unknown_fields)}")


def step_for_section(section_name: str) -> WizardStep:
    for step, names in STEP_SECTIONS.items():
        if section_name in names:
            return step
    raise ValueError(f"Unknown form section '{section_name}'")
