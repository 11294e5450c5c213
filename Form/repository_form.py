from wtforms import BooleanField, IntegerField, StringField
from wtforms.validators import DataRequired, NumberRange, Optional, ValidationError
from Form.forms import ApiForm
from util.git_provider import REPO_URL_ERROR, is_valid_repo_url


def repo_url(form, field):
    if field.data and not is_valid_repo_url(field.data):
        raise ValidationError(REPO_URL_ERROR)


class RepositoryForm(ApiForm):
    url = StringField("Repository URL", validators=[DataRequired(), repo_url])
    enabled = BooleanField("Enabled", default=True)
    priority = IntegerField("Priority", validators=[Optional(), NumberRange(min=0)])
    auto_download = BooleanField("Auto download")


class RepositoryUpdateForm(RepositoryForm):
    url = StringField("Repository URL", validators=[Optional(), repo_url])
