from dataclasses import dataclass, field
from typing import Any


@dataclass
class TableField:
    name: str = ''
    field_type: str = ''
    parameters: str = ''
    # type tag of the column, shown by the describe command
    additional_data: Any = None

    @property
    def nullable(self):
        return 'not null' not in self.parameters.lower()

    def describe(self, primary=False):
        line = f'{self.name} {self.field_type} {self.parameters}'
        if primary:
            line += ' primary key'
        if self.additional_data:
            line += f' [{self.additional_data}]'
        return line


@dataclass
class TableStructure:
    """Read-only view of the table an entity maps to"""

    fields: list[TableField] = field(default_factory=list)
    primary_keys: list[str] = field(default_factory=list)
    primary_key_ids: list[int] = field(default_factory=list)
    table_name: str = ''

    def preprocess(self):
        field_names = self.column_names()
        missing = [key for key in self.primary_keys if key not in field_names]
        if missing:
            raise Exception(f'primary key {missing} not among fields of {self.table_name}')
        self.primary_key_ids = [field_names.index(key) for key in self.primary_keys]

    def add_field(self, new_field: TableField):
        if self.has_field(new_field.name):
            raise Exception(f'field {new_field.name} already defined on {self.table_name}')
        self.fields.append(new_field)

    def has_field(self, field_name):
        return self.get_field(field_name) is not None

    def get_field(self, field_name):
        for table_field in self.fields:
            if table_field.name == field_name:
                return table_field
        return None

    def column_names(self):
        return [f.name for f in self.fields]

    def describe(self):
        lines = [self.table_name]
        for idx, table_field in enumerate(self.fields):
            lines.append('    ' + table_field.describe(primary=idx in self.primary_key_ids))
        return lines
