from pydantic import BaseModel, Field, field_validator


class SurchargeStep(BaseModel):
    day: int
    percentage: float = Field(allow_inf_nan=False)


class SurchargeRule(BaseModel):
    steps: list[SurchargeStep] = []


class SurchargeConfig(BaseModel):
    global_default: SurchargeRule = SurchargeRule()
    # Keyed by zero-based month index, as stored.
    monthly_overrides: dict[str, SurchargeRule] = {}

    @field_validator("monthly_overrides")
    @classmethod
    def _check_month_keys(cls, value: dict[str, SurchargeRule]) -> dict[str, SurchargeRule]:
        for key in value:
            if key not in {str(i) for i in range(12)}:
                raise ValueError(f"Invalid month key: {key}")
        return value


class StepIssueResponse(BaseModel):
    scope: str
    index: int
    day: int
    previous_day: int


class SurchargeSaveResponse(BaseModel):
    config: SurchargeConfig
    issues: list[StepIssueResponse]


class SurchargeValidationResponse(BaseModel):
    valid: bool
    issues: list[StepIssueResponse]


class EffectiveRuleResponse(BaseModel):
    month: int
    month_name: str
    overridden: bool
    rule: SurchargeRule
